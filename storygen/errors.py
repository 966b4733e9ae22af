"""Error taxonomy for the generation cache and pipeline.

Caller errors (ValidationError), recoverable contention
(GenerationInProgress), per-stage pipeline failures (PipelineStageError
subclasses) and persistence failures (StoreUnavailable) are kept distinct so
the HTTP layer can map each to its own status code.
"""

from typing import Optional

import httpx
from google.genai.errors import ClientError, ServerError


class StorygenError(Exception):
    """Base class for all storygen errors."""


class ValidationError(StorygenError):
    """Descriptor or labels failed shape/range validation."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class GenerationInProgress(StorygenError):
    """A pipeline run for the same fingerprint is already active."""

    def __init__(self, fingerprint: str) -> None:
        self.fingerprint = fingerprint
        super().__init__(f"Generation already in progress for {fingerprint}")


class DuplicateKey(StorygenError):
    """An artifact store entry already exists for the fingerprint."""

    def __init__(self, fingerprint: str) -> None:
        self.fingerprint = fingerprint
        super().__init__(f"Cache entry already exists for {fingerprint}")


class StoreUnavailable(StorygenError):
    """The persistence layer failed."""


class PipelineStageError(StorygenError):
    """A pipeline stage failed; fatal to the current run.

    Attributes:
        stage: Pipeline stage name (see storygen.orchestrator.state)
        index: 1-based job or clip index where the failure happened, if any
    """

    stage: str = "unknown"

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        self.index = index
        super().__init__(message)


class PlanningFailed(PipelineStageError):
    stage = "storyboarding"


class DecodeError(PipelineStageError):
    """No known payload shape matched a completed transition job."""

    stage = "video_gen"


class TransitionFailed(PipelineStageError):
    """A transition job failed or could not be submitted."""

    stage = "video_gen"


class CollaboratorTimeout(PipelineStageError):
    """A transition job exhausted its poll budget."""

    stage = "video_gen"

    def __init__(self, message: str, index: Optional[int] = None, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message, index=index)


class MissingClip(PipelineStageError):
    stage = "stitching"

    def __init__(self, message: str, index: Optional[int] = None, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message, index=index)


class AssemblyFailed(PipelineStageError):
    """The muxing tool failed; detail carries its error output."""

    stage = "stitching"

    def __init__(self, message: str, detail: str = "") -> None:
        self.detail = detail
        super().__init__(message)


def is_transient(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx, network)."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    return False
