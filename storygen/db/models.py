"""SQLAlchemy 2.0 ORM models for the generation cache."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class StorygenCache(Base):
    """One completed educational video, keyed by descriptor fingerprint.

    Created once on the first successful pipeline run; afterwards only
    last_accessed_at and access_count change.
    """
    __tablename__ = "storygen_cache"
    __table_args__ = (
        Index("idx_storygen_lookup", "chapter_id", "topic_id", "subject_id", "level"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    chapter_id: Mapped[int] = mapped_column(Integer)
    topic_id: Mapped[int] = mapped_column(Integer)
    subject_id: Mapped[int] = mapped_column(Integer)
    level: Mapped[int] = mapped_column(Integer)
    chapter: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    video_url: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime)
    access_count: Mapped[int] = mapped_column(Integer, default=1)
