"""External generation collaborators.

Abstract interfaces the pipeline stages depend on, plus the production
implementations (Gemini text/image, Veo long-running video jobs, ffmpeg).

Usage:
    from storygen.services.collaborators import TextGenerator, GeminiTextGenerator

    planner = ScenePlanner(GeminiTextGenerator("my-project", "us-central1", "gemini-2.5-flash"))
"""

from storygen.services.collaborators.base import (
    ImageGenerator,
    ImageResolver,
    Muxer,
    TextGenerator,
    VideoGenerator,
)
from storygen.services.collaborators.ffmpeg import FfmpegMuxer
from storygen.services.collaborators.vertex import (
    GeminiImageGenerator,
    GeminiTextGenerator,
    VeoVideoGenerator,
)

__all__ = [
    "FfmpegMuxer",
    "GeminiImageGenerator",
    "GeminiTextGenerator",
    "ImageGenerator",
    "ImageResolver",
    "Muxer",
    "TextGenerator",
    "VeoVideoGenerator",
    "VideoGenerator",
]
