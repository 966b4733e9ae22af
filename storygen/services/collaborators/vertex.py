"""Vertex AI collaborators: Gemini text/image generation and Veo video jobs.

Gemini calls go through the google-genai SDK. Veo first/last-frame jobs use
the Vertex REST long-running prediction endpoints directly so the completion
payload is seen as raw JSON; its shape varies between model versions and is
decoded by the transition renderer.
"""

import asyncio
import base64
import logging
from pathlib import Path
from typing import Optional

import google.auth
import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.genai import types
from google.oauth2 import service_account

from storygen.prompts import REFERENCE_PREFIX
from storygen.schemas.storyboard import ImagePayload, PollResult
from storygen.services.collaborators.base import ImageGenerator, TextGenerator, VideoGenerator
from storygen.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class GeminiTextGenerator(TextGenerator):
    """Storyboard text generation with a JSON response mime type."""

    def __init__(
        self, project_id: str, location: str, model_id: str, temperature: float = 0.7,
    ) -> None:
        self._project_id = project_id
        self._location = location_for_model(model_id, location)
        self._model_id = model_id
        self._temperature = temperature

    async def generate_text(self, prompt: str) -> str:
        client = get_vertex_client(self._project_id, self._location)
        response = await client.aio.models.generate_content(
            model=self._model_id,
            contents=[prompt],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=self._temperature,
            ),
        )
        return response.text or ""


class GeminiImageGenerator(ImageGenerator):
    """Scene image generation, optionally conditioned on a reference image."""

    def __init__(
        self, project_id: str, location: str, model_id: str, aspect_ratio: str = "16:9",
    ) -> None:
        self._project_id = project_id
        self._location = location_for_model(model_id, location)
        self._model_id = model_id
        self._aspect_ratio = aspect_ratio

    async def generate_image(
        self,
        prompt: str,
        reference: Optional[ImagePayload] = None,
    ) -> Optional[ImagePayload]:
        client = get_vertex_client(self._project_id, self._location)

        if reference is not None:
            contents = [
                types.Part.from_bytes(data=reference.data, mime_type=reference.mime_type),
                types.Part.from_text(text=REFERENCE_PREFIX + prompt),
            ]
        else:
            contents = [prompt]

        response = await client.aio.models.generate_content(
            model=self._model_id,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["TEXT", "IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=self._aspect_ratio),
            ),
        )

        # First inline image across all candidates wins
        for candidate in response.candidates or []:
            parts = candidate.content.parts if candidate.content else None
            for part in parts or []:
                if part.inline_data and part.inline_data.data:
                    return ImagePayload(
                        data=part.inline_data.data,
                        mime_type=part.inline_data.mime_type or "image/png",
                    )
        return None


def _image_instance(image: ImagePayload) -> dict:
    return {
        "bytesBase64Encoded": base64.b64encode(image.data).decode("ascii"),
        "mimeType": image.mime_type,
    }


class VeoVideoGenerator(VideoGenerator):
    """Veo first/last-frame interpolation over the Vertex REST API.

    Args:
        project_id: Google Cloud project
        location: Vertex region (e.g. "us-central1")
        model_id: Veo model (e.g. "veo-3.1-generate-preview")
        credentials_file: Optional service-account JSON; ADC otherwise
        http_client: Optional shared httpx.AsyncClient
    """

    def __init__(
        self,
        project_id: str,
        location: str,
        model_id: str,
        *,
        credentials_file: Optional[Path] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        aspect_ratio: str = "16:9",
        resolution: str = "1080p",
        generate_audio: bool = True,
    ) -> None:
        if not project_id:
            raise RuntimeError("google_cloud.project_id is required for video generation")

        base = (
            f"https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{location}/publishers/google/models/{model_id}"
        )
        self._submit_url = f"{base}:predictLongRunning"
        self._poll_url = f"{base}:fetchPredictOperation"
        self._credentials_file = credentials_file
        self._credentials = None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(120.0, connect=30.0),
        )
        self._parameters = {
            "aspectRatio": aspect_ratio,
            "resolution": resolution,
            "personGeneration": "allow_all",
            "enhancePrompt": True,
            "generateAudio": generate_audio,
        }

    def _load_credentials(self):
        if self._credentials_file:
            return service_account.Credentials.from_service_account_file(
                str(self._credentials_file), scopes=CLOUD_PLATFORM_SCOPES,
            )
        credentials, _ = google.auth.default(scopes=CLOUD_PLATFORM_SCOPES)
        return credentials

    async def _auth_headers(self) -> dict[str, str]:
        if self._credentials is None:
            self._credentials = await asyncio.to_thread(self._load_credentials)
        if not self._credentials.valid:
            await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._credentials.token}",
        }

    async def submit(
        self,
        prompt: str,
        first_frame: ImagePayload,
        last_frame: ImagePayload,
        duration_seconds: int,
    ) -> str:
        body = {
            "instances": [{
                "prompt": prompt,
                "image": _image_instance(first_frame),
                "lastFrame": _image_instance(last_frame),
            }],
            "parameters": {**self._parameters, "durationSeconds": duration_seconds},
        }
        response = await self._http_client.post(
            self._submit_url, headers=await self._auth_headers(), json=body,
        )
        response.raise_for_status()
        operation_name = response.json().get("name")
        if not operation_name:
            raise ValueError("Video generation response carried no operation name")
        return operation_name

    async def poll(self, operation_handle: str) -> PollResult:
        response = await self._http_client.post(
            self._poll_url,
            headers=await self._auth_headers(),
            json={"operationName": operation_handle},
        )
        response.raise_for_status()
        payload = response.json()
        return PollResult(
            done=bool(payload.get("done")),
            response=payload.get("response"),
            error=payload.get("error"),
        )

    async def aclose(self) -> None:
        await self._http_client.aclose()
