"""API route handlers and Pydantic request/response schemas."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, StrictInt

from storygen.orchestrator import PipelineOrchestrator
from storygen.schemas.cache import CacheEntry, CacheStatus
from storygen.services.artifact_store import DEFAULT_LIST_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storygen")


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------
class CheckRequest(BaseModel):
    topic_id: StrictInt
    chapter_id: StrictInt
    subject_id: StrictInt
    level: StrictInt

    def descriptor(self) -> dict:
        return {
            "subject_id": self.subject_id,
            "chapter_id": self.chapter_id,
            "topic_id": self.topic_id,
            "level": self.level,
        }


class GenerateRequest(CheckRequest):
    chapter: str
    topic: str
    subject: str

    def labels(self) -> dict:
        return {"chapter": self.chapter, "topic": self.topic, "subject": self.subject}


class VideoMetadata(BaseModel):
    chapter_id: int
    topic_id: int
    subject_id: int
    level: int
    chapter: str
    topic: str
    subject: str
    created_at: datetime
    access_count: Optional[int] = None
    generation_time_ms: Optional[int] = None


class CheckResponse(BaseModel):
    cached: bool
    status: CacheStatus
    video_url: Optional[str] = None
    metadata: Optional[VideoMetadata] = None


class GenerateResponse(BaseModel):
    video_url: str
    cached: bool
    status: str = "complete"
    metadata: VideoMetadata


class CachedVideo(BaseModel):
    id: str
    chapter_id: int
    topic_id: int
    subject_id: int
    level: int
    chapter: str
    topic: str
    subject: str
    video_url: str
    created_at: datetime
    last_accessed_at: datetime
    access_count: int


class CacheListResponse(BaseModel):
    videos: list[CachedVideo]
    count: int


class DeleteResponse(BaseModel):
    success: bool
    message: str
    removed: int = 0


def _metadata(entry: CacheEntry, **extra) -> VideoMetadata:
    return VideoMetadata(
        chapter_id=entry.descriptor.chapter_id,
        topic_id=entry.descriptor.topic_id,
        subject_id=entry.descriptor.subject_id,
        level=entry.descriptor.level,
        chapter=entry.labels.chapter,
        topic=entry.labels.topic,
        subject=entry.labels.subject,
        created_at=entry.created_at,
        **extra,
    )


def _cached_video(entry: CacheEntry) -> CachedVideo:
    return CachedVideo(
        id=entry.fingerprint,
        chapter_id=entry.descriptor.chapter_id,
        topic_id=entry.descriptor.topic_id,
        subject_id=entry.descriptor.subject_id,
        level=entry.descriptor.level,
        chapter=entry.labels.chapter,
        topic=entry.labels.topic,
        subject=entry.labels.subject,
        video_url=entry.artifact_location,
        created_at=entry.created_at,
        last_accessed_at=entry.last_accessed_at,
        access_count=entry.access_count,
    )


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Orchestrator built during application startup."""
    return request.app.state.orchestrator


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/check", response_model=CheckResponse)
async def check_video_cache(
    request: CheckRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Report whether a video is cached or being generated, without generating."""
    report = await orchestrator.check_status(request.descriptor())
    if report.entry is None:
        return CheckResponse(cached=False, status=report.status)
    return CheckResponse(
        cached=True,
        status=report.status,
        video_url=report.entry.artifact_location,
        metadata=_metadata(report.entry, access_count=report.entry.access_count),
    )


@router.post("/generate", response_model=GenerateResponse)
async def generate_educational_video(
    request: GenerateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Return the cached video for the descriptor, generating it on a miss.

    The request stays open for the whole run on a miss; concurrent requests
    for the same descriptor get 409 until it finishes.
    """
    logger.info(
        f"Storygen request: chapter_id={request.chapter_id} topic_id={request.topic_id} "
        f"subject_id={request.subject_id} level={request.level}"
    )
    result = await orchestrator.get_or_generate(request.descriptor(), request.labels())
    entry = result.entry

    if result.cached:
        metadata = _metadata(entry, access_count=entry.access_count)
    else:
        metadata = _metadata(entry, generation_time_ms=result.generation_time_ms)

    return GenerateResponse(
        video_url=entry.artifact_location,
        cached=result.cached,
        metadata=metadata,
    )


@router.get("/cache", response_model=CacheListResponse)
async def get_cached_videos(
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=1000),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """List cached videos, newest first."""
    entries = await orchestrator.list_cached(limit)
    videos = [_cached_video(entry) for entry in entries]
    return CacheListResponse(videos=videos, count=len(videos))


@router.delete("/cache/{fingerprint}", response_model=DeleteResponse)
async def delete_cached_video(
    fingerprint: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Remove one cache entry. The video file stays on disk."""
    if not await orchestrator.evict(fingerprint):
        raise HTTPException(status_code=404, detail="Cached video not found")
    return DeleteResponse(success=True, message="Cached video deleted", removed=1)


@router.delete("/cache", response_model=DeleteResponse)
async def clear_cache(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    """Remove every cache entry."""
    removed = await orchestrator.evict_all()
    return DeleteResponse(success=True, message="Cache cleared", removed=removed)
