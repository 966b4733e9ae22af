"""
File management service for storygen.

Handles structured filesystem artifact storage with path traversal protection.
Final videos live under videos/; each pipeline run gets its own working
directory under runs/ for transition clips and the concat manifest.
"""
import base64
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Optional

from storygen.config import settings
from storygen.schemas.storyboard import ImagePayload

PLACEHOLDER_URL = "https://placehold.co/800x450/333/FFF?text=Scene+{index}"

_DATA_URL = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)


def to_data_url(image: ImagePayload) -> str:
    """Encode image bytes as a data URL."""
    encoded = base64.b64encode(image.data).decode("ascii")
    return f"data:{image.mime_type};base64,{encoded}"


def parse_data_url(reference: str) -> Optional[ImagePayload]:
    """Decode a data URL; returns None if reference is not one."""
    match = _DATA_URL.match(reference)
    if not match:
        return None
    return ImagePayload(
        data=base64.b64decode(match.group(2)),
        mime_type=match.group(1) or "image/png",
    )


def placeholder_reference(index: int) -> str:
    """Clearly-labeled stand-in image for a scene whose render failed."""
    return PLACEHOLDER_URL.format(index=index)


class FileManager:
    """
    Manage filesystem artifacts for generation runs.

    Creates structured directories:
    - {data_dir}/videos/ - Final assembled videos (served publicly)
    - {data_dir}/runs/{fingerprint}-{run_id}/clips/ - Transition clips

    Implements path traversal protection to prevent directory escape attacks.
    """

    def __init__(
        self,
        data_dir: str | Path | None = None,
        public_base_url: str | None = None,
    ):
        """
        Initialize FileManager with data directory.

        Args:
            data_dir: Root directory for all artifacts.
                      If None, uses settings.storage.data_dir
            public_base_url: Base URL that serves {data_dir}/videos at /videos.
                      If None, uses settings.storage.public_base_url
        """
        if data_dir is None:
            data_dir = settings.storage.data_dir
        if public_base_url is None:
            public_base_url = settings.storage.public_base_url

        self.data_dir = Path(data_dir).resolve()
        self.videos_dir = self.data_dir / "videos"
        self.runs_dir = self.data_dir / "runs"
        self.public_base_url = public_base_url.rstrip("/")

        self.videos_dir.mkdir(parents=True, exist_ok=True)
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def create_run_dir(self, fingerprint: str) -> Path:
        """
        Create a fresh working directory for one pipeline run.

        The run id makes the name unique across concurrent and repeated runs.

        Raises:
            ValueError: If fingerprint creates path outside runs_dir (traversal attack)
        """
        run_dir = (self.runs_dir / f"{fingerprint}-{uuid.uuid4().hex[:8]}").resolve()

        if not run_dir.is_relative_to(self.runs_dir):
            raise ValueError("Invalid run path")

        run_dir.mkdir()
        (run_dir / "clips").mkdir()
        return run_dir

    def save_clip(self, run_dir: Path, job_index: int, data: bytes) -> Path:
        """
        Save a transition clip.

        Args:
            run_dir: Working directory from create_run_dir
            job_index: Transition job index (1-based)
            data: MP4 video data

        Returns:
            Path to saved clip file
        """
        filepath = run_dir / "clips" / f"clip_{job_index}.mp4"
        filepath.write_bytes(data)
        return filepath

    def manifest_path(self, run_dir: Path) -> Path:
        return run_dir / "concat_list.txt"

    def new_output_path(self, fingerprint: str) -> Path:
        """Path for a final video; name embeds fingerprint and a timestamp."""
        filename = f"educational_{fingerprint}_{int(time.time() * 1000)}.mp4"
        return self.videos_dir / filename

    def public_url(self, output_path: Path) -> str:
        """Public URL for a file in videos_dir."""
        return f"{self.public_base_url}/videos/{output_path.name}"

    def cleanup_run(self, run_dir: Path) -> None:
        """Remove a run's working directory and everything in it."""
        if not run_dir.resolve().is_relative_to(self.runs_dir):
            raise ValueError("Invalid run path")
        shutil.rmtree(run_dir, ignore_errors=True)
