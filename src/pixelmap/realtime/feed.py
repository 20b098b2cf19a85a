"""PostgreSQL change feed, a LISTEN connection exposed as an async iterator.

Learn: asyncpg delivers NOTIFY through a synchronous callback on the
event loop. The callback only enqueues the raw payload; the watcher
pulls payloads with `async for`, one at a time, in arrival order.

A dedicated connection is used (not one from the SQLAlchemy pool):
LISTEN is per-connection state and must outlive any request.
"""

import asyncio
from typing import Optional

import asyncpg
import structlog

logger = structlog.get_logger()

_CLOSED = object()


class ChangeFeedClosed(Exception):
    """Raised by the feed iterator when the LISTEN connection is gone."""


class PgChangeFeed:
    """Async iterator over raw NOTIFY payloads on one channel."""

    def __init__(self, channel: str):
        self.channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._conn: Optional[asyncpg.Connection] = None

    @classmethod
    async def open(cls, dsn: str, channel: str) -> "PgChangeFeed":
        """Connect and start listening. Raises on connection failure."""
        feed = cls(channel)
        conn = await asyncpg.connect(dsn)
        try:
            conn.add_termination_listener(feed._on_terminated)
            await conn.add_listener(channel, feed._on_notify)
        except Exception:
            await conn.close()
            raise
        feed._conn = conn
        logger.info("feed.listening", channel=channel)
        return feed

    def _on_notify(self, conn, pid, channel, payload):
        self._queue.put_nowait(payload)

    def _on_terminated(self, conn):
        logger.warning("feed.connection_lost", channel=self.channel)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _CLOSED:
            raise ChangeFeedClosed(f"LISTEN connection for {self.channel!r} closed")
        return item

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None or conn.is_closed():
            return
        try:
            await conn.remove_listener(self.channel, self._on_notify)
        finally:
            await conn.close()
