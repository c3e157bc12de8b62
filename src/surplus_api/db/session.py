"""Async engine and session factory shared by request handlers and scheduled jobs."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from surplus_api.core.settings import settings


def _build_engine(database_url: str) -> AsyncEngine:
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Concurrent writers wait on the database lock instead of failing fast.
        connect_args["timeout"] = 30
    return create_async_engine(
        database_url,
        echo=settings.database_echo,
        future=True,
        pool_pre_ping=not database_url.startswith("sqlite"),
        connect_args=connect_args,
    )


engine: AsyncEngine = _build_engine(settings.database_url)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped unit of work."""

    async with async_session() as session:
        yield session


async def dispose_engine() -> None:
    await engine.dispose()


__all__ = ["async_session", "dispose_engine", "engine", "get_session"]
