"""
Code Journal Backend — Database Session Management
===================================================

What:  Async SQLAlchemy engine, session factory, declarative base and the
       FastAPI session dependency.
Why:   Centralizes all relational connection logic in one place.
How:   Creates an async engine (pooled for server databases), provides a
       session dependency that rolls back on error and always closes.
Who:   Route handlers via Depends(get_db_session); services receive the session.
When:  Engine is created at module import; sessions are created per-request.

Transactions:
    The submission repository owns its commits (see services/unit_of_work.py)
    because the filesystem store must be compensated when a commit fails.
    The dependency below still commits at the end of a request so that simple
    read/write handlers that never commit explicitly persist their changes.
"""

from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from codejournal.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Build create_async_engine keyword arguments for a URL.

    SQLite (aiosqlite) uses its own pool classes that reject pool sizing
    arguments, so those are only passed for server databases.
    """
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    url = database_url or settings.database_url
    return create_async_engine(url, **engine_options(url))


# ── Engine & Session Factory ──────────────────────────────────────────────
engine = build_engine()

# expire_on_commit=False: the repository reads attributes after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers every model with one metadata object, which Alembic reads
    for migrations and tests use for create_all().
    """
    pass


class TimestampMixin:
    """
    created_at / updated_at / deleted_at columns shared by every table.

    Soft deletion: a non-null deleted_at hides the row from every query in
    the relational store unless the query explicitly opts in.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
        index=True,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits whatever is still pending
        4. On error: rolls back, then re-raises for the exception handlers
        5. Always: closes the session (returns connection to pool)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_schema() -> None:
    """Create missing tables (development convenience; production uses Alembic)."""
    import codejournal.models  # noqa: F401  (registers every table)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Gracefully closes all connections in the pool on shutdown."""
    await engine.dispose()
