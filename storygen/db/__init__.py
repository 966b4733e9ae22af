"""
Database module for storygen.

Provides async SQLAlchemy engines with SQLite WAL mode,
session factories, and schema initialization.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from storygen.db.engine import build_engine, build_session_factory
from storygen.db.models import Base, StorygenCache

logger = logging.getLogger(__name__)


async def init_database(engine: AsyncEngine) -> None:
    """Initialize database schema on first run (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


__all__ = [
    "Base",
    "StorygenCache",
    "build_engine",
    "build_session_factory",
    "init_database",
]
