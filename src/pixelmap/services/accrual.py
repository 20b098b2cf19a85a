"""Accrual job, grants every user one point on a fixed interval.

Learn: Runs as a long-lived task in the FastAPI lifespan, independent of
requests and of the change feed. Each pass:
1. Reads the full user set
2. Adds 1 to each user's point in memory
3. Persists users one at a time, each in its own transaction

There is no transaction around the batch. If one user fails to save, the
earlier ones stay committed and the job moves on to the next user.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelmap.db.models import User

logger = structlog.get_logger()


class UserRepository(Protocol):
    async def list_users(self) -> list[Any]: ...

    async def save_point(self, user: Any) -> None: ...


class SqlUserRepository:
    """UserRepository backed by the users table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_users(self) -> list[User]:
        async with self.session_factory() as db:
            result = await db.execute(select(User).order_by(User.created_at))
            return list(result.scalars().all())

    async def save_point(self, user: User) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(User).where(User.id == user.id).values(point=user.point)
            )
            await db.commit()


@dataclass
class AccrualResult:
    updated: int = 0
    failed: int = 0


class AccrualJob:
    """Periodic point accrual.

    Usage:
        job = AccrualJob(SqlUserRepository(session_factory), interval=82800)
        asyncio.create_task(job.run_loop())
    """

    def __init__(self, repository: UserRepository, interval: float = 23 * 60 * 60):
        self.repository = repository
        self.interval = interval
        self.runs = 0
        self._running = False

    async def run_once(self) -> AccrualResult:
        """One accrual pass over every user."""
        users = await self.repository.list_users()
        result = AccrualResult()

        for user in users:
            user.point += 1
            try:
                await self.repository.save_point(user)
            except Exception:
                user.point -= 1
                result.failed += 1
                logger.exception("accrual.user_failed", user_id=str(user.id))
                continue
            result.updated += 1

        self.runs += 1
        logger.info("accrual.completed", updated=result.updated, failed=result.failed)
        return result

    async def run_loop(self) -> None:
        """Sleep one interval, run a pass, repeat until stopped."""
        self._running = True
        logger.info("accrual.started", interval=self.interval)

        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            try:
                await self.run_once()
            except Exception:
                logger.exception("accrual.error")

    def stop(self) -> None:
        self._running = False
        logger.info("accrual.stopping")
