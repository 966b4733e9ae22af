"""Durable artifact store mapping descriptor fingerprints to finished videos.

Backed by the storygen_cache table. Every operation runs in its own
transaction; access bookkeeping is a single UPDATE so concurrent cache hits
never lose counts.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storygen.db.models import StorygenCache
from storygen.errors import DuplicateKey, StoreUnavailable
from storygen.schemas.cache import CacheEntry
from storygen.schemas.descriptor import Descriptor, Labels

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_entry(row: StorygenCache) -> CacheEntry:
    return CacheEntry(
        fingerprint=row.id,
        descriptor=Descriptor(
            subject_id=row.subject_id,
            chapter_id=row.chapter_id,
            topic_id=row.topic_id,
            level=row.level,
        ),
        labels=Labels(chapter=row.chapter, topic=row.topic, subject=row.subject),
        artifact_location=row.video_url,
        created_at=row.created_at,
        last_accessed_at=row.last_accessed_at,
        access_count=row.access_count,
    )


class ArtifactStore:
    """Keyed store of completed cache entries.

    Args:
        session_factory: async_sessionmaker bound to the cache database
        clock: Returns the current (naive UTC) time; injectable for tests
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or _utcnow

    @asynccontextmanager
    async def _session(self, action: str):
        try:
            async with self._session_factory() as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Artifact store {action} failed: {e}")
            raise StoreUnavailable(f"Artifact store {action} failed: {e}") from e

    async def lookup(self, fingerprint: str) -> Optional[CacheEntry]:
        """Return the entry for fingerprint, or None. Does not touch access counts."""
        async with self._session("lookup") as session:
            row = await session.get(StorygenCache, fingerprint)
            return _to_entry(row) if row else None

    async def find_by_descriptor(self, descriptor: Descriptor) -> Optional[CacheEntry]:
        """Equality lookup on the descriptor fields (secondary index)."""
        async with self._session("find_by_descriptor") as session:
            result = await session.execute(
                select(StorygenCache).where(
                    StorygenCache.chapter_id == descriptor.chapter_id,
                    StorygenCache.topic_id == descriptor.topic_id,
                    StorygenCache.subject_id == descriptor.subject_id,
                    StorygenCache.level == descriptor.level,
                )
            )
            row = result.scalars().first()
            return _to_entry(row) if row else None

    async def insert(
        self,
        fingerprint: str,
        descriptor: Descriptor,
        labels: Labels,
        artifact_location: str,
    ) -> CacheEntry:
        """Create the entry for fingerprint.

        Raises:
            DuplicateKey: If an entry already exists for fingerprint
            StoreUnavailable: On any other persistence failure
        """
        now = self._clock()
        row = StorygenCache(
            id=fingerprint,
            chapter_id=descriptor.chapter_id,
            topic_id=descriptor.topic_id,
            subject_id=descriptor.subject_id,
            level=descriptor.level,
            chapter=labels.chapter,
            topic=labels.topic,
            subject=labels.subject,
            video_url=artifact_location,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
        )
        try:
            async with self._session("insert") as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            raise DuplicateKey(fingerprint) from e

        logger.info(f"Saved cache entry {fingerprint} -> {artifact_location}")
        return _to_entry(row)

    async def record_access(self, fingerprint: str) -> Optional[CacheEntry]:
        """Bump access_count and last_accessed_at; return the updated entry.

        Returns None if no entry exists (e.g. evicted concurrently).
        """
        async with self._session("record_access") as session:
            async with session.begin():
                result = await session.execute(
                    update(StorygenCache)
                    .where(StorygenCache.id == fingerprint)
                    .values(
                        access_count=StorygenCache.access_count + 1,
                        last_accessed_at=self._clock(),
                    )
                )
                if result.rowcount == 0:
                    return None
                row = (
                    await session.execute(
                        select(StorygenCache)
                        .where(StorygenCache.id == fingerprint)
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one()
                return _to_entry(row)

    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> list[CacheEntry]:
        """Entries ordered by created_at, newest first."""
        async with self._session("list_recent") as session:
            result = await session.execute(
                select(StorygenCache)
                .order_by(StorygenCache.created_at.desc())
                .limit(limit)
            )
            return [_to_entry(row) for row in result.scalars().all()]

    async def remove(self, fingerprint: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        async with self._session("remove") as session:
            async with session.begin():
                result = await session.execute(
                    delete(StorygenCache).where(StorygenCache.id == fingerprint)
                )
        removed = result.rowcount > 0
        if removed:
            logger.info(f"Removed cache entry {fingerprint}")
        return removed

    async def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        async with self._session("clear") as session:
            async with session.begin():
                result = await session.execute(delete(StorygenCache))
        logger.info(f"Cleared {result.rowcount} cache entries")
        return result.rowcount
