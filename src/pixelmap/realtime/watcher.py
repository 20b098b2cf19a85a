"""Change feed watcher, bridges committed pixel writes to the broadcast gate.

Learn: The watcher is a single long-running task. For each NOTIFY payload:
1. Decode it into a ChangeNotification (insert / update / other)
2. insert → project the embedded full document, no extra read
3. update → re-read the pixel by key (the payload has no post-image)
4. other  → ignore
5. Hand the PixelEvent to the gate (exactly one broadcast, or none)

Per-item failures (malformed payload, lookup miss, DB error) are logged
and counted, never raised: one bad notification must not end the
subscription. If the LISTEN connection drops, the watcher reconnects with
backoff and resumes; notifications committed in between are not replayed.

Payloads are processed one at a time in arrival order, so delivery order
to each viewer matches processing order.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

import structlog

from pixelmap.db.connect import connect_with_retry
from pixelmap.realtime.changes import (
    ChangeNotification,
    InsertNotification,
    MalformedNotification,
    OtherNotification,
    UpdateNotification,
    parse_notification,
)
from pixelmap.realtime.events import PixelEvent
from pixelmap.realtime.feed import ChangeFeedClosed
from pixelmap.realtime.gate import BroadcastGate

logger = structlog.get_logger()

PixelLookup = Callable[[str], Awaitable[Optional[PixelEvent]]]


class ChangeFeed(Protocol):
    def __aiter__(self) -> AsyncIterator[Any]: ...

    async def close(self) -> None: ...


class PixelLookupMiss(LookupError):
    """An update notification refers to a pixel that no longer exists."""

    def __init__(self, document_key: str):
        super().__init__(f"pixel {document_key} not found")
        self.document_key = document_key


@dataclass
class WatcherStats:
    processed: int = 0
    emitted: int = 0
    ignored: int = 0
    lookup_misses: int = 0
    errors: int = 0
    reconnects: int = 0
    started_at: Optional[datetime] = None


class ChangeFeedWatcher:
    """Consumes the pixel change feed and broadcasts PixelEvents."""

    def __init__(
        self,
        gate: BroadcastGate,
        lookup: PixelLookup,
        open_feed: Optional[Callable[[], Awaitable[ChangeFeed]]] = None,
        *,
        connect_attempts: int = 5,
        backoff_base: float = 0.5,
        backoff_max: float = 10.0,
    ):
        self.gate = gate
        self.lookup = lookup
        self.open_feed = open_feed
        self.connect_attempts = connect_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.stats = WatcherStats()
        self._running = False
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self._running

    # ─── Per-notification handling ────────────────────────

    async def handle(self, notification: ChangeNotification) -> Optional[PixelEvent]:
        """Turn one notification into at most one broadcast.

        Raises PixelLookupMiss when an update's pixel can't be re-read,
        and MalformedNotification when an insert's document is incomplete.
        """
        if isinstance(notification, InsertNotification):
            event = PixelEvent.from_document(notification.full_document)
        elif isinstance(notification, UpdateNotification):
            event = await self.lookup(notification.document_key)
            if event is None:
                raise PixelLookupMiss(notification.document_key)
        elif isinstance(notification, OtherNotification):
            return None
        else:
            raise TypeError(f"unsupported notification: {notification!r}")

        self.gate.broadcast(event)
        return event

    async def process(self, payload: Any) -> Optional[PixelEvent]:
        """Decode and handle one raw payload. Never raises on item errors."""
        self.stats.processed += 1
        try:
            notification = parse_notification(payload)
            event = await self.handle(notification)
        except PixelLookupMiss as e:
            self.stats.lookup_misses += 1
            logger.warning("watcher.lookup_miss", document_key=e.document_key)
            return None
        except MalformedNotification as e:
            self.stats.errors += 1
            logger.warning("watcher.malformed_notification", error=str(e))
            return None
        except Exception:
            self.stats.errors += 1
            logger.exception("watcher.notification_failed")
            return None

        if event is None:
            self.stats.ignored += 1
            logger.debug("watcher.ignored", operation_type=notification.operation_type)
        else:
            self.stats.emitted += 1
        return event

    async def consume(self, feed: ChangeFeed) -> None:
        """Process every payload from `feed` until it ends or closes."""
        async for payload in feed:
            await self.process(payload)
            if self._stop_requested:
                break

    # ─── Lifecycle ────────────────────────────────────────

    async def run(self) -> None:
        """Open the feed (with retry) and consume it, reconnecting on loss.

        Raises StoreUnavailableError if the feed can't be (re)opened.
        """
        if self.open_feed is None:
            raise RuntimeError("ChangeFeedWatcher.run() needs an open_feed factory")

        self._running = True
        self._stop_requested = False
        self.stats.started_at = datetime.now(timezone.utc)
        logger.info("watcher.started", namespace=self.gate.namespace)

        try:
            while self._running:
                feed = await connect_with_retry(
                    self.open_feed,
                    attempts=self.connect_attempts,
                    base_delay=self.backoff_base,
                    max_delay=self.backoff_max,
                    what="change feed",
                )
                try:
                    await self.consume(feed)
                except ChangeFeedClosed:
                    self.stats.reconnects += 1
                    logger.warning("watcher.feed_closed", reconnects=self.stats.reconnects)
                finally:
                    await feed.close()
        finally:
            self._running = False
            logger.info("watcher.stopped", **self.get_stats())

    def stop(self) -> None:
        """Signal the watcher to stop after the current notification."""
        self._stop_requested = True
        self._running = False

    def get_stats(self) -> dict:
        return {
            "processed": self.stats.processed,
            "emitted": self.stats.emitted,
            "ignored": self.stats.ignored,
            "lookup_misses": self.stats.lookup_misses,
            "errors": self.stats.errors,
            "reconnects": self.stats.reconnects,
            "started_at": (
                self.stats.started_at.isoformat()
                if self.stats.started_at
                else None
            ),
        }
