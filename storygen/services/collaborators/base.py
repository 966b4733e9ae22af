"""Abstract base classes for the external generation collaborators.

Defines the consistent async interface the pipeline stages call. Exact wire
formats belong to the implementations; stages only see prompt text, image
payloads, operation handles and poll results.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx

from storygen.schemas.storyboard import ImagePayload, PollResult
from storygen.services.file_manager import parse_data_url


class TextGenerator(ABC):
    """Text-generation collaborator used by the scene planner."""

    @abstractmethod
    async def generate_text(self, prompt: str) -> str:
        """Return the raw model response text for prompt."""
        ...


class ImageGenerator(ABC):
    """Image-generation collaborator used by the scene renderer."""

    @abstractmethod
    async def generate_image(
        self,
        prompt: str,
        reference: Optional[ImagePayload] = None,
    ) -> Optional[ImagePayload]:
        """Render prompt to an image.

        Args:
            prompt: Image prompt text.
            reference: Optional prior image to condition on for consistency.

        Returns:
            The generated image, or None if the model produced no image.
        """
        ...


class VideoGenerator(ABC):
    """Asynchronous (long-running job) video-generation collaborator."""

    @abstractmethod
    async def submit(
        self,
        prompt: str,
        first_frame: ImagePayload,
        last_frame: ImagePayload,
        duration_seconds: int,
    ) -> str:
        """Start a job interpolating first_frame -> last_frame; return its handle."""
        ...

    @abstractmethod
    async def poll(self, operation_handle: str) -> PollResult:
        """Observe the job once."""
        ...

    async def aclose(self) -> None:
        """Release transport resources. Nothing to release by default."""


class Muxer(ABC):
    """Stream-copy concatenation tool used by the clip assembler."""

    @abstractmethod
    async def concat(self, manifest_path: Path, output_path: Path) -> None:
        """Concatenate the files listed in manifest_path into output_path."""
        ...


class ImageResolver:
    """Turn an opaque image reference into bytes for the video collaborator.

    Data URLs decode in-process; http(s) URLs (e.g. placeholders) are fetched.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._http_client = http_client

    async def resolve(self, reference: str) -> ImagePayload:
        """
        Raises:
            ValueError: If the reference is neither a data URL nor http(s)
            httpx.HTTPError: If fetching a URL fails
        """
        payload = parse_data_url(reference)
        if payload is not None:
            return payload

        if not reference.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported image reference: {reference[:80]}")

        if self._http_client is not None:
            response = await self._http_client.get(reference, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(60.0)) as client:
                response = await client.get(reference, follow_redirects=True)
        response.raise_for_status()
        return ImagePayload(
            data=response.content,
            mime_type=response.headers.get("content-type", "image/png").split(";")[0],
        )
