"""Canvas context, owner of every process-wide resource.

Learn: Instead of module-level singletons (a global engine, a global
socket namespace, a global Redis client), one CanvasContext is built at
startup and hung on app.state.canvas. Route handlers, the socket
endpoint and the middleware all reach resources through it, and tests
can build one with fakes.

Lifecycle:
  start() → store reachable (retry + backoff) → Redis (optional)
          → watcher task → accrual task
  stop()  → stop tasks → close viewer sessions → close Redis → dispose engine
"""

import asyncio
from functools import partial
from typing import Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pixelmap.config import Settings
from pixelmap.db.connect import connect_with_retry
from pixelmap.db.engine import build_engine, build_session_factory
from pixelmap.realtime.feed import PgChangeFeed
from pixelmap.realtime.gate import BroadcastGate
from pixelmap.realtime.watcher import ChangeFeedWatcher
from pixelmap.services.accrual import AccrualJob, SqlUserRepository
from pixelmap.services.pixel_service import make_pixel_lookup

logger = structlog.get_logger()


class CanvasContext:
    """Engine, sessions, Redis, gate, watcher and accrual job for one process."""

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        gate: BroadcastGate,
        watcher: ChangeFeedWatcher,
        accrual: AccrualJob,
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory = session_factory
        self.gate = gate
        self.watcher = watcher
        self.accrual = accrual
        self.redis: Optional[aioredis.Redis] = None
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "CanvasContext":
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)
        gate = BroadcastGate(
            namespace=settings.socket_path,
            queue_size=settings.socket_queue_size,
            overflow_policy=settings.socket_overflow_policy,
        )
        watcher = ChangeFeedWatcher(
            gate=gate,
            lookup=make_pixel_lookup(session_factory),
            open_feed=partial(PgChangeFeed.open, settings.listen_dsn, settings.pixel_channel),
            connect_attempts=settings.db_connect_attempts,
            backoff_base=settings.db_connect_backoff_base,
            backoff_max=settings.db_connect_backoff_max,
        )
        accrual = AccrualJob(
            SqlUserRepository(session_factory),
            interval=settings.accrual_interval_seconds,
        )
        return cls(settings, engine, session_factory, gate, watcher, accrual)

    async def _ping_store(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def start(self) -> None:
        """Bring up resources in dependency order.

        Raises StoreUnavailableError if PostgreSQL stays unreachable.
        """
        await connect_with_retry(
            self._ping_store,
            attempts=self.settings.db_connect_attempts,
            base_delay=self.settings.db_connect_backoff_base,
            max_delay=self.settings.db_connect_backoff_max,
            what="postgres",
        )
        logger.info("canvas.store_ready")

        try:
            client = aioredis.from_url(
                self.settings.redis_url, encoding="utf-8", decode_responses=True
            )
            await client.ping()
            self.redis = client
            logger.info("canvas.redis_connected", url=self.settings.redis_url)
        except Exception as e:
            # Redis only backs rate limiting, the canvas works without it
            logger.warning("canvas.redis_unavailable", error=str(e))

        self._spawn(self.watcher.run(), "pixel-watcher")
        if self.settings.accrual_enabled:
            self._spawn(self.accrual.run_loop(), "accrual-job")

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(_log_task_exit)
        self._tasks.append(task)

    async def stop(self) -> None:
        logger.info("canvas.stopping")
        self.accrual.stop()
        self.watcher.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.gate.close()

        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

        await self.engine.dispose()


def _log_task_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("canvas.task_failed", task=task.get_name(), error=str(exc))
