"""Cached generation orchestrator.

Coordinates one descriptor's trip through the pipeline:
- Cache lookup (hit: bump access bookkeeping and return)
- Single-flight acquisition (contention: GenerationInProgress)
- storyboard -> keyframes -> video_gen -> stitching, strictly in order
- Persist the finished video; nothing is persisted for a failed run
- Per-stage timing and logging, progress callback for CLI/API integration
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storygen.config import Settings
from storygen.orchestrator.state import describe, next_state
from storygen.pipeline.keyframes import SceneRenderer
from storygen.pipeline.stitcher import ClipAssembler
from storygen.pipeline.storyboard import ScenePlanner
from storygen.pipeline.video_gen import TransitionRenderer
from storygen.schemas.cache import CacheEntry, CacheStatus, GenerationResult, StatusReport
from storygen.schemas.descriptor import Descriptor, Labels
from storygen.services.artifact_store import DEFAULT_LIST_LIMIT, ArtifactStore
from storygen.services.collaborators import (
    FfmpegMuxer,
    GeminiImageGenerator,
    GeminiTextGenerator,
    ImageResolver,
    VeoVideoGenerator,
)
from storygen.services.file_manager import FileManager
from storygen.services.single_flight import SingleFlightGuard

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
DescriptorInput = Union[Descriptor, Mapping[str, Any]]
LabelsInput = Union[Labels, Mapping[str, Any]]


class PipelineOrchestrator:
    """Serve videos from the cache, generating each descriptor at most once.

    Args:
        store: Durable cache of finished videos
        guard: Single-flight registry owned by the caller
        planner: Scene planner stage
        scene_renderer: Keyframe stage
        transition_renderer: Transition clip stage
        assembler: Clip stitching stage
        file_manager: Run directories and final video paths
        scene_count: Scenes per video (at least 2, one transition each pair)
        keep_work_files: Leave per-run working directories in place
    """

    def __init__(
        self,
        store: ArtifactStore,
        guard: SingleFlightGuard,
        planner: ScenePlanner,
        scene_renderer: SceneRenderer,
        transition_renderer: TransitionRenderer,
        assembler: ClipAssembler,
        file_manager: FileManager,
        *,
        scene_count: int = 3,
        keep_work_files: bool = False,
    ) -> None:
        if scene_count < 2:
            raise ValueError(f"scene_count must be at least 2, got {scene_count}")
        self.store = store
        self.guard = guard
        self.planner = planner
        self.scene_renderer = scene_renderer
        self.transition_renderer = transition_renderer
        self.assembler = assembler
        self.file_manager = file_manager
        self.scene_count = scene_count
        self.keep_work_files = keep_work_files

    async def check_status(self, descriptor: DescriptorInput) -> StatusReport:
        """Report cache / in-flight state for descriptor. Never starts work.

        Raises:
            ValidationError: If descriptor is malformed
        """
        descriptor = Descriptor.parse(descriptor)
        fp = descriptor.fingerprint

        entry = await self.store.lookup(fp)
        if entry is not None:
            return StatusReport(fingerprint=fp, status=CacheStatus.CACHED, entry=entry)
        if self.guard.is_in_flight(fp):
            return StatusReport(fingerprint=fp, status=CacheStatus.IN_PROGRESS)
        return StatusReport(fingerprint=fp, status=CacheStatus.ABSENT)

    async def get_or_generate(
        self,
        descriptor: DescriptorInput,
        labels: LabelsInput,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """Return the cached video for descriptor, generating it on a miss.

        Raises:
            ValidationError: Bad descriptor or labels (before any cache access)
            GenerationInProgress: Another run for the same descriptor is active
            PipelineStageError: A stage failed; nothing was cached
            StoreUnavailable: The cache database failed
        """
        descriptor = Descriptor.parse(descriptor)
        labels = Labels.parse(labels)
        fp = descriptor.fingerprint

        cached = await self._serve_cached(fp)
        if cached is not None:
            return cached

        logger.info(f"Cache miss {fp}: generating")
        with self.guard.hold(fp):
            # A run may have finished between the lookup and the acquisition
            cached = await self._serve_cached(fp)
            if cached is not None:
                return cached

            start = time.monotonic()
            entry = await self._run_pipeline(fp, descriptor, labels, progress_callback)
            elapsed_ms = int((time.monotonic() - start) * 1000)

        logger.info(f"Generated {fp} in {elapsed_ms / 1000:.2f}s -> {entry.artifact_location}")
        return GenerationResult(entry=entry, cached=False, generation_time_ms=elapsed_ms)

    async def _serve_cached(self, fp: str) -> Optional[GenerationResult]:
        entry = await self.store.record_access(fp)
        if entry is None:
            return None
        logger.info(f"Cache hit {fp} (access #{entry.access_count})")
        return GenerationResult(entry=entry, cached=True)

    async def _run_pipeline(
        self,
        fp: str,
        descriptor: Descriptor,
        labels: Labels,
        progress_callback: Optional[ProgressCallback],
    ) -> CacheEntry:
        status = "pending"
        step_log: dict[str, float] = {}
        step_start = time.monotonic()

        def advance() -> None:
            nonlocal status, step_start
            now = time.monotonic()
            if status != "pending":
                step_log[status] = now - step_start
                logger.info(f"{fp}: {status} completed in {step_log[status]:.2f}s")
            status = next_state(status)
            step_start = now
            logger.info(f"{fp}: {describe(status)}")
            if progress_callback:
                progress_callback(status)

        run_dir = self.file_manager.create_run_dir(fp)
        output_path: Optional[Path] = None
        try:
            advance()
            scenes = await self.planner.plan(descriptor, labels, self.scene_count)

            advance()
            rendered = await self.scene_renderer.render(scenes)
            placeholders = sum(1 for scene in rendered if scene.placeholder)
            if placeholders:
                logger.warning(f"{fp}: {placeholders}/{len(rendered)} scenes use placeholders")

            advance()
            jobs = await self.transition_renderer.render(rendered, run_dir)

            advance()
            output_path = self.file_manager.new_output_path(fp)
            await self.assembler.assemble(
                [job.clip_reference for job in jobs], run_dir, output_path,
            )

            entry = await self.store.insert(
                fp, descriptor, labels, self.file_manager.public_url(output_path),
            )
            advance()
            logger.info(f"{fp}: stage timings {step_log}")
            return entry

        except asyncio.CancelledError:
            logger.warning(f"{fp}: run cancelled during {status}")
            _discard(output_path)
            raise

        except Exception as e:
            logger.error(f"{fp}: pipeline failed at step {status}: {type(e).__name__}: {e}")
            if progress_callback:
                progress_callback("failed")
            _discard(output_path)
            raise

        finally:
            if not self.keep_work_files:
                self.file_manager.cleanup_run(run_dir)

    async def list_cached(self, limit: int = DEFAULT_LIST_LIMIT) -> list[CacheEntry]:
        return await self.store.list_recent(limit)

    async def evict(self, fingerprint: str) -> bool:
        """Remove one cache entry. The video file itself is left in place."""
        return await self.store.remove(fingerprint)

    async def evict_all(self) -> int:
        return await self.store.clear()

    async def wait_draining(self) -> None:
        """Wait for transition jobs abandoned by cancelled runs."""
        await self.transition_renderer.wait_draining()

    async def aclose(self) -> None:
        """Drain abandoned transition jobs and release collaborator connections."""
        await self.transition_renderer.aclose()


def _discard(output_path: Optional[Path]) -> None:
    """Remove a final video that never made it into the cache."""
    if output_path is not None and output_path.exists():
        output_path.unlink()


def build_orchestrator(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    guard: Optional[SingleFlightGuard] = None,
) -> PipelineOrchestrator:
    """Wire the production Vertex AI and ffmpeg collaborators.

    Raises:
        RuntimeError: If google_cloud.project_id is not configured
    """
    pipeline = settings.pipeline
    file_manager = FileManager(settings.storage.data_dir, settings.storage.public_base_url)

    video_generator = VeoVideoGenerator(
        settings.google_cloud.project_id,
        settings.google_cloud.location,
        settings.models.video_gen,
        credentials_file=settings.google_cloud.credentials_file,
        aspect_ratio=pipeline.video_aspect_ratio,
        resolution=pipeline.video_resolution,
        generate_audio=pipeline.generate_audio,
    )

    return PipelineOrchestrator(
        store=ArtifactStore(session_factory),
        guard=guard or SingleFlightGuard(),
        planner=ScenePlanner(
            GeminiTextGenerator(
                settings.google_cloud.project_id,
                settings.google_cloud.location,
                settings.models.text_gen,
            ),
            max_attempts=pipeline.planner_max_attempts,
            retry_delay=pipeline.planner_retry_delay,
            style=pipeline.visual_style,
        ),
        scene_renderer=SceneRenderer(
            GeminiImageGenerator(
                settings.google_cloud.project_id,
                settings.google_cloud.location,
                settings.models.image_gen,
                pipeline.video_aspect_ratio,
            ),
            style=pipeline.visual_style,
            delay=pipeline.image_gen_delay,
        ),
        transition_renderer=TransitionRenderer(
            video_generator,
            file_manager,
            image_resolver=ImageResolver(),
            poll_interval=pipeline.video_poll_interval,
            max_polls=pipeline.video_poll_max,
        ),
        assembler=ClipAssembler(FfmpegMuxer(), file_manager),
        file_manager=file_manager,
        scene_count=pipeline.scene_count,
        keep_work_files=pipeline.keep_work_files,
    )
