"""Async SQLAlchemy engine and session factory.

Usage:
    from dropzone.database import async_session

    async with async_session() as db:
        result = await db.execute(select(FileRecord))
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from dropzone.config import settings


def build_engine(url: str):
    """Create an async engine. SQLite (dev/tests) does not take pool sizing args."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

