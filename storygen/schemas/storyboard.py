"""Storyboard, rendered scene and transition job schemas.

SceneSchema/StoryboardOutput describe the raw JSON the text-generation
collaborator returns; Scene, RenderedScene and TransitionJob are the
validated records that flow forward through the pipeline.
"""

import re
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel

ALLOWED_DURATIONS = (4, 6, 8)
DEFAULT_DURATION = 6

_LEADING_INT = re.compile(r"\s*(\d+)")


def normalize_duration(value: Any) -> int:
    """Coerce a duration to one of 4, 6 or 8 seconds, defaulting to 6."""
    if isinstance(value, bool):
        return DEFAULT_DURATION
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        value = int(match.group(1)) if match else None
    elif isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value in ALLOWED_DURATIONS:
        return value
    return DEFAULT_DURATION


class SceneSchema(BaseModel):
    """One shot as emitted by the storyboard LLM."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    shot: int = Field(description="Shot number starting from 1")
    prompt: str = Field(min_length=1, description="Detailed visual description for the shot")
    duration: Union[int, float, str, None] = Field(
        default=None, description="Shot duration in seconds, 4, 6 or 8"
    )
    description: str = Field(default="", description="One-sentence on-screen summary")
    shot_story: str = Field(
        default="", alias="shotStory", description="Educational purpose of the shot"
    )
    hero_subject: Optional[str] = Field(
        default=None, alias="heroSubject", description="Main visual subject, shot 1 only"
    )


class StoryboardOutput(RootModel[list[SceneSchema]]):
    """Complete storyboard: a JSON array of shots."""


class Scene(BaseModel):
    """One planned unit of narrative/visual content."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    render_prompt: str
    duration_seconds: Literal[4, 6, 8] = DEFAULT_DURATION
    summary: str = ""
    narrative: str = ""
    hero_subject_description: Optional[str] = None


class RenderedScene(Scene):
    """Scene plus an opaque image locator (data URL or http URL)."""

    image_reference: str
    placeholder: bool = False


class ImagePayload(BaseModel):
    """Raw image bytes exchanged with the image and video collaborators."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "image/png"


class PollResult(BaseModel):
    """One observation of a long-running video operation."""

    done: bool = False
    response: Optional[dict[str, Any]] = None
    error: Optional[Any] = None


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_JOB_STATES = {JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT}


class TransitionJob(BaseModel):
    """Asynchronous render spanning rendered scene `index` to `index + 1`."""

    index: int = Field(ge=1)
    prompt: str
    duration_seconds: Literal[4, 6, 8] = DEFAULT_DURATION
    state: JobState = JobState.SUBMITTED
    operation_handle: Optional[str] = None
    attempt_count: int = 0
    clip_reference: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES
