"""Async engine and session factory for the collector's form, submission and job tables."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings

# Server-side databases drop idle connections; the worker holds its pool for hours.
POOL_RECYCLE_SECONDS = 1800


def engine_options(url: str) -> dict:
    """Keyword arguments for ``create_async_engine`` given a database URL."""
    options: dict = {"echo": settings.echo_sql}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
        options["pool_recycle"] = POOL_RECYCLE_SECONDS
    return options


def build_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    return create_async_engine(url, **engine_options(url))


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_factory = build_session_factory(engine)


async def get_db():
    """FastAPI dependency that yields an async session."""
    async with async_session_factory() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections at shutdown."""
    await engine.dispose()
