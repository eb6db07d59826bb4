"""Database engines, session factories and the declarative base.

The API reads through the async engine; lifecycle operations and RQ workers
write through the sync engine.
"""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from leadengine.config import settings

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


async_engine = create_async_engine(settings.database_url, pool_pre_ping=True, pool_size=10, max_overflow=5)
async_session = async_sessionmaker(async_engine, expire_on_commit=False)

sync_engine = create_engine(settings.database_url_sync, pool_pre_ping=True, pool_size=5, max_overflow=2)
SyncSession = sessionmaker(bind=sync_engine, expire_on_commit=False)


async def get_db():
    """FastAPI dependency yielding an async session."""
    async with async_session() as session:
        yield session


def get_sync_session() -> Session:
    return SyncSession()
