"""
NoteMind Backend — Database Session Management
================================================

What:  Async SQLAlchemy engine, session factory and declarative base.
Why:   Centralizes all database connection logic in one place.
How:   One async engine per process. NoteStore opens a short session per
       operation from `async_session_factory`, so concurrent AI steps (the
       two halves of combined processing) never share a session.

Connection Pooling (PostgreSQL):
    pool_size=20, max_overflow=10, pre_ping on, recycle hourly.
    SQLite (tests, local runs) uses SQLAlchemy's default pool and ignores
    these settings.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def _engine_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options())

# expire_on_commit=False: returned ORM objects stay readable after the session closes
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata drives Alembic."""
    pass


async def dispose_engine() -> None:
    """Close all pooled connections; called from the lifespan handler on shutdown."""
    await engine.dispose()
