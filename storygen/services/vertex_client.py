"""Vertex AI client wrapper using google-genai SDK.

This module provides location-aware clients for Google Generative AI using Vertex AI mode.
Authentication is handled automatically via Application Default Credentials (ADC).

Usage:
    from storygen.services.vertex_client import get_vertex_client

    client = get_vertex_client("my-project", "us-central1")
    client = get_vertex_client("my-project", "global")   # global endpoint
"""

import os

from dotenv import load_dotenv
from google import genai

# Load .env for GOOGLE_APPLICATION_CREDENTIALS (ADC)
load_dotenv()

# Per-(project, location) client cache
_clients: dict[tuple[str, str], genai.Client] = {}

# Models that must use the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str, default_location: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return default_location


def get_vertex_client(project_id: str, location: str) -> genai.Client:
    """Get or create a Vertex AI client for the given project and location.

    Clients are cached per project and location so repeated calls are cheap.

    Raises:
        RuntimeError: If no Google Cloud project is configured
    """
    if not project_id:
        raise RuntimeError(
            "google_cloud.project_id is required for generation "
            "(set STORYGEN_GOOGLE_CLOUD__PROJECT_ID or config.yaml)"
        )

    key = (project_id, location)
    if key not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"

        _clients[key] = genai.Client(
            vertexai=True,
            project=project_id,
            location=location,
        )

    return _clients[key]
