"""Clip assembly with the ffmpeg concat demuxer.

Concatenates the transition clips, in index order, into one MP4 via a
concat list manifest. The manifest is removed whether or not muxing
succeeds; the clips themselves are left to the caller's run cleanup.
"""

import logging
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from storygen.errors import AssemblyFailed, MissingClip
from storygen.services.collaborators.base import Muxer
from storygen.services.file_manager import FileManager

logger = logging.getLogger(__name__)


@contextmanager
def concat_manifest(list_file: Path, clip_paths: list[Path]) -> Iterator[Path]:
    """Write a concat demuxer list for clip_paths; always unlink it on exit."""
    try:
        with open(list_file, "w") as f:
            for clip_path in clip_paths:
                # Absolute paths; the muxer is invoked with -safe 0
                f.write(f"file '{_quote(clip_path.resolve())}'\n")
        yield list_file
    finally:
        if list_file.exists():
            list_file.unlink()


def _quote(path: Path) -> str:
    """Escape single quotes for the concat demuxer's quoted strings."""
    return str(path).replace("'", "'\\''")


class ClipAssembler:
    """Concatenate ordered clips into a single output file."""

    def __init__(self, muxer: Muxer, file_manager: FileManager) -> None:
        self._muxer = muxer
        self._file_manager = file_manager

    async def assemble(
        self,
        clip_refs: list[str],
        run_dir: Path,
        output_path: Path,
    ) -> Path:
        """Mux clip_refs (index order) into output_path.

        Args:
            clip_refs: Clip paths, first transition first
            run_dir: Working directory for the concat manifest
            output_path: Final video location

        Returns:
            output_path

        Raises:
            MissingClip: A referenced clip is not on disk (nothing is muxed)
            AssemblyFailed: The muxer failed; detail carries its stderr
        """
        clip_paths = [Path(ref) for ref in clip_refs]
        if not clip_paths:
            raise AssemblyFailed("No clips to assemble")

        for index, clip_path in enumerate(clip_paths, start=1):
            if not clip_path.is_file():
                logger.error(f"Stitching: clip {index} missing at {clip_path}")
                raise MissingClip(
                    f"Clip {index} not found: {clip_path}", index=index, path=str(clip_path),
                )

        logger.info(f"Stitching {len(clip_paths)} clips -> {output_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with concat_manifest(self._file_manager.manifest_path(run_dir), clip_paths) as list_file:
            try:
                await self._muxer.concat(list_file, output_path)
            except subprocess.CalledProcessError as e:
                stderr = _decode_stderr(e.stderr)
                logger.error(f"ffmpeg error: {stderr}")
                raise AssemblyFailed(f"Video stitching failed: {stderr[:500]}", detail=stderr) from e
            except Exception as e:
                logger.error(f"Stitching error: {e}")
                raise AssemblyFailed(f"Stitching error: {str(e)[:500]}", detail=str(e)) from e

        logger.info(f"Stitching complete -> {output_path}")
        return output_path


def _decode_stderr(stderr) -> str:
    if not stderr:
        return "No error output"
    if isinstance(stderr, bytes):
        return stderr.decode(errors="replace")
    return str(stderr)
