"""Cache entry and status report schemas returned by the orchestrator."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from storygen.schemas.descriptor import Descriptor, Labels


class CacheEntry(BaseModel):
    """Completed artifact for one fingerprint plus access bookkeeping."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    descriptor: Descriptor
    labels: Labels
    artifact_location: str
    created_at: datetime
    last_accessed_at: datetime
    access_count: int = 1


class CacheStatus(str, Enum):
    CACHED = "cached"
    IN_PROGRESS = "in_progress"
    ABSENT = "absent"


class StatusReport(BaseModel):
    """Read-only view of a descriptor's cache and in-flight state."""

    fingerprint: str
    status: CacheStatus
    entry: Optional[CacheEntry] = None


class GenerationResult(BaseModel):
    """Outcome of get_or_generate."""

    entry: CacheEntry
    cached: bool
    generation_time_ms: Optional[int] = None
