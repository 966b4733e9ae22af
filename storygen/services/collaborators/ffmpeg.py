"""ffmpeg concat demuxer muxer (stream copy, no re-encoding)."""

import asyncio
import logging
import subprocess
from pathlib import Path

from storygen.services.collaborators.base import Muxer

logger = logging.getLogger(__name__)


class FfmpegMuxer(Muxer):
    """Concatenate clips with the ffmpeg concat demuxer.

    -safe 0 allows absolute paths in the manifest; -c copy keeps the
    original codec and quality (audio included).

    Raises:
        subprocess.CalledProcessError: If ffmpeg exits non-zero
    """

    def __init__(self, ffmpeg_binary: str = "ffmpeg") -> None:
        self._ffmpeg = ffmpeg_binary

    async def concat(self, manifest_path: Path, output_path: Path) -> None:
        await asyncio.to_thread(self._run, manifest_path, output_path)

    def _run(self, manifest_path: Path, output_path: Path) -> None:
        command = [
            self._ffmpeg,
            "-y",  # Overwrite output file
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(manifest_path),
            "-c",
            "copy",
            str(output_path),
        ]
        logger.info(f"ffmpeg start: {' '.join(command)}")
        subprocess.run(command, check=True, capture_output=True)
        logger.info(f"Concat demuxer stitching complete: {output_path}")
