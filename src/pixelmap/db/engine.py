"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode. create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

The engine is not a module-level global: the CanvasContext builds it at
startup and route handlers reach it through app.state.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pixelmap.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the pooled async engine. echo=True in debug to see SQL."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=15,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db(request: Request) -> AsyncSession:
    """FastAPI dependency, yields a session per request, auto-closes."""
    session_factory = request.app.state.canvas.session_factory
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
