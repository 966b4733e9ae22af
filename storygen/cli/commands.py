"""CLI commands for storygen using Typer and Rich.

Implements the cache commands:
- generate: Return the cached video for a descriptor, generating it on a miss
- status: Show whether a descriptor is cached
- list: List cached videos in a table
- evict: Remove one cache entry
- clear: Remove every cache entry
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storygen import validate_dependencies
from storygen.config import settings
from storygen.db import build_engine, build_session_factory, init_database
from storygen.errors import GenerationInProgress, PipelineStageError, StorygenError, ValidationError
from storygen.orchestrator import PipelineOrchestrator, build_orchestrator
from storygen.orchestrator.state import describe
from storygen.schemas.cache import CacheEntry, CacheStatus, GenerationResult
from storygen.schemas.descriptor import Descriptor
from storygen.services.artifact_store import DEFAULT_LIST_LIMIT, ArtifactStore

app = typer.Typer(name="storygen", help="Cached AI educational video generation")
console = Console()

# EX_TEMPFAIL: same descriptor already generating, try again later
EXIT_IN_PROGRESS = 75


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline progress"),
):
    """Cached AI educational video generation."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def open_store() -> AsyncIterator[ArtifactStore]:
    engine = build_engine(settings.storage.database_url)
    try:
        await init_database(engine)
        yield ArtifactStore(build_session_factory(engine))
    finally:
        await engine.dispose()


@asynccontextmanager
async def open_orchestrator() -> AsyncIterator[PipelineOrchestrator]:
    engine = build_engine(settings.storage.database_url)
    try:
        await init_database(engine)
        orchestrator = build_orchestrator(settings, build_session_factory(engine))
        try:
            yield orchestrator
        finally:
            await orchestrator.aclose()
    finally:
        await engine.dispose()


def _descriptor(subject_id: int, chapter_id: int, topic_id: int, level: int) -> Descriptor:
    try:
        return Descriptor.parse({
            "subject_id": subject_id,
            "chapter_id": chapter_id,
            "topic_id": topic_id,
            "level": level,
        })
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


def _entry_panel(entry: CacheEntry, title: str) -> Panel:
    info_lines = [
        f"[bold]ID:[/bold] {entry.fingerprint}",
        f"[bold]Subject:[/bold] {entry.labels.subject} ({entry.descriptor.subject_id})",
        f"[bold]Chapter:[/bold] {entry.labels.chapter} ({entry.descriptor.chapter_id})",
        f"[bold]Topic:[/bold] {entry.labels.topic} ({entry.descriptor.topic_id})",
        f"[bold]Level:[/bold] {entry.descriptor.level}",
        f"[bold]Video:[/bold] [green]{entry.artifact_location}[/green]",
        f"[bold]Created:[/bold] {entry.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]Last Access:[/bold] {entry.last_accessed_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]Access Count:[/bold] {entry.access_count}",
    ]
    return Panel("\n".join(info_lines), title=f"[bold]{title}[/bold]", border_style="blue")


@app.command()
def generate(
    subject_id: int = typer.Argument(..., help="Subject ID"),
    chapter_id: int = typer.Argument(..., help="Chapter ID"),
    topic_id: int = typer.Argument(..., help="Topic ID"),
    level: int = typer.Argument(..., help="Class level (1-12)"),
    subject: str = typer.Option(..., "--subject", help="Subject name"),
    chapter: str = typer.Option(..., "--chapter", help="Chapter name"),
    topic: str = typer.Option(..., "--topic", help="Topic name"),
):
    """Return the cached video for a descriptor, generating it on a miss.

    A miss runs the full pipeline: storyboard, keyframes, transition clips
    and stitching.
    """
    descriptor = _descriptor(subject_id, chapter_id, topic_id, level)
    labels = {"chapter": chapter, "topic": topic, "subject": subject}

    # Fail-fast dependency validation
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    try:
        result = asyncio.run(_generate_async(descriptor, labels))

    except GenerationInProgress:
        console.print("[yellow]This video is already being generated. Try again later.[/yellow]")
        raise typer.Exit(code=EXIT_IN_PROGRESS)

    except PipelineStageError as e:
        console.print(f"[red]✗ Generation failed at {e.stage}:[/red] {str(e)}")
        raise typer.Exit(code=1)

    except StorygenError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    except RuntimeError as e:
        # Missing Google Cloud configuration surfaces here
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    if result.cached:
        console.print("[green]✓[/green] Served from cache")
    else:
        console.print(
            f"[green]✓[/green] Video generated in {result.generation_time_ms / 1000:.1f}s"
        )
    console.print(f"[green]Video:[/green] {result.entry.artifact_location}")


async def _generate_async(descriptor: Descriptor, labels: dict) -> GenerationResult:
    """Async implementation of generate command."""
    async with open_orchestrator() as orchestrator:
        with console.status("[bold green]Checking cache...") as status:
            def progress_callback(stage: str):
                status.update(f"[bold green]{describe(stage)}...")

            return await orchestrator.get_or_generate(
                descriptor, labels, progress_callback=progress_callback,
            )


@app.command()
def status(
    subject_id: int = typer.Argument(..., help="Subject ID"),
    chapter_id: int = typer.Argument(..., help="Chapter ID"),
    topic_id: int = typer.Argument(..., help="Topic ID"),
    level: int = typer.Argument(..., help="Class level (1-12)"),
):
    """Show whether a descriptor's video is cached. Never generates."""
    descriptor = _descriptor(subject_id, chapter_id, topic_id, level)
    asyncio.run(_status_async(descriptor))


async def _status_async(descriptor: Descriptor):
    async with open_store() as store:
        entry = await store.lookup(descriptor.fingerprint)

    if entry is None:
        console.print(f"[yellow]{CacheStatus.ABSENT.value}:[/yellow] {descriptor.fingerprint}")
        return
    console.print(_entry_panel(entry, "Cached Video"))


@app.command(name="list")
def list_cached(
    limit: int = typer.Option(DEFAULT_LIST_LIMIT, "--limit", "-n", help="Maximum entries to show"),
):
    """List cached videos, newest first."""
    asyncio.run(_list_async(limit))


async def _list_async(limit: int):
    async with open_store() as store:
        entries = await store.list_recent(limit)

    if not entries:
        console.print("[yellow]No cached videos[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Topic")
    table.add_column("Level", justify="right")
    table.add_column("Accesses", justify="right")
    table.add_column("Created")

    for entry in entries:
        topic_display = entry.labels.topic if len(entry.labels.topic) <= 40 else entry.labels.topic[:37] + "..."
        table.add_row(
            entry.fingerprint[:8] + "...",
            topic_display,
            str(entry.descriptor.level),
            str(entry.access_count),
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def evict(
    fingerprint: str = typer.Argument(..., help="Cache entry ID (descriptor fingerprint)"),
):
    """Remove one cache entry. The video file is left on disk."""
    asyncio.run(_evict_async(fingerprint))


async def _evict_async(fingerprint: str):
    async with open_store() as store:
        removed = await store.remove(fingerprint)

    if not removed:
        console.print(f"[red]Error:[/red] Cache entry not found: {fingerprint}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Removed {fingerprint}")


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Remove every cache entry."""
    if not yes:
        typer.confirm("Remove all cached videos?", abort=True)
    asyncio.run(_clear_async())


async def _clear_async():
    async with open_store() as store:
        removed = await store.clear()
    console.print(f"[green]✓[/green] Cleared {removed} cached videos")
