"""Database schema utilities."""

from sqlalchemy.ext.asyncio import AsyncEngine

from ..models import Base  # noqa: F401  registers every table on the metadata
from .connection import db_manager


def _resolve_engine(engine: AsyncEngine = None) -> AsyncEngine:
    if engine is None:
        if not db_manager.engine:
            db_manager.initialize()
        engine = db_manager.engine
    return engine


async def create_tables(engine: AsyncEngine = None):
    """Create all database tables."""
    async with _resolve_engine(engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
