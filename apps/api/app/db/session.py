"""Async engine and session factory for call records."""
from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import settings


def _connect_args(url: str) -> dict[str, object]:
    # asyncpg takes ssl as a connect arg; sqlite drivers reject unknown ones.
    if url.startswith("postgresql+asyncpg") and settings.database_ssl_required:
        return {"ssl": True}
    return {}


def build_engine(url: str) -> AsyncEngine:
    options: dict[str, object] = {"echo": False, "connect_args": _connect_args(url)}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


engine = build_engine(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session; stages open their own transactions on it."""

    async with SessionLocal() as session:
        yield session
