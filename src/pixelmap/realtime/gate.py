"""Broadcast gate: fan-out of pixel events to connected viewer sessions.

Learn: The gate is the in-process pub/sub endpoint for one namespace.
broadcast() never awaits a socket. It snapshots the current sessions and
drops the message into each session's bounded queue; a per-session sender
task drains that queue to the socket. One slow viewer can only fill its
own queue, never stall the watcher or the other viewers.

When a queue is full the overflow policy decides:
- drop_oldest → discard the oldest queued message, keep the newest
- disconnect  → close the session, the client reconnects and refetches

Delivery is at-most-once per connected session: no ack, no retry, no
replay for sessions that connect later.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from pixelmap.realtime.events import PixelEvent

logger = structlog.get_logger()

DROP_OLDEST = "drop_oldest"
DISCONNECT = "disconnect"

_CLOSE = object()


class ViewerSession:
    """One connected viewer with its own bounded outbound queue."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        maxsize: int = 256,
        overflow_policy: str = DROP_OLDEST,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.overflow_policy = overflow_policy
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def offer(self, message: dict[str, Any]) -> bool:
        """Queue a message without waiting. False if it was not queued."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            pass

        if self.overflow_policy == DROP_OLDEST:
            self.queue.get_nowait()
            self.dropped += 1
            self.queue.put_nowait(message)
            return True

        self.close()
        return False

    def close(self) -> None:
        """Stop the session; pending messages are discarded."""
        if self.closed:
            return
        self.closed = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(_CLOSE)

    async def pump(self, send: Callable[[dict[str, Any]], Awaitable[None]]) -> None:
        """Drain the queue into `send` until the session is closed.

        Errors raised by `send` propagate: the caller owns the socket.
        """
        while True:
            message = await self.queue.get()
            if message is _CLOSE:
                return
            await send(message)

    def __repr__(self) -> str:
        return f"<ViewerSession {self.id} queued={self.queue.qsize()} closed={self.closed}>"


@dataclass
class GateStats:
    connected: int = 0
    disconnected: int = 0
    broadcasts: int = 0
    overflow_disconnects: int = 0


class BroadcastGate:
    """The set of viewer sessions under one namespace."""

    def __init__(
        self,
        namespace: str = "/api/v1/socket",
        queue_size: int = 256,
        overflow_policy: str = DROP_OLDEST,
    ):
        self.namespace = namespace
        self.queue_size = queue_size
        self.overflow_policy = overflow_policy
        self.stats = GateStats()
        self._sessions: dict[str, ViewerSession] = {}

    def open_session(self, session_id: Optional[str] = None) -> ViewerSession:
        """Build a session with this gate's queue settings (not yet connected)."""
        return ViewerSession(
            session_id=session_id,
            maxsize=self.queue_size,
            overflow_policy=self.overflow_policy,
        )

    def connect(self, session: ViewerSession) -> None:
        self._sessions[session.id] = session
        self.stats.connected += 1
        logger.debug(
            "gate.session_connected",
            namespace=self.namespace,
            session_id=session.id,
            sessions=len(self._sessions),
        )

    def disconnect(self, session: ViewerSession) -> None:
        """Deregister a session. Safe to call more than once."""
        removed = self._sessions.pop(session.id, None)
        session.close()
        if removed is None:
            return
        self.stats.disconnected += 1
        logger.debug(
            "gate.session_disconnected",
            namespace=self.namespace,
            session_id=session.id,
            sessions=len(self._sessions),
        )

    def is_connected(self, session: ViewerSession) -> bool:
        return session.id in self._sessions

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def broadcast(self, event: PixelEvent) -> int:
        """Queue `event` for every session connected right now.

        Returns how many sessions it was queued for.
        """
        message = event.to_message()
        delivered = 0
        for session in list(self._sessions.values()):
            if session.closed:
                # closed outside the gate (socket torn down), just deregister
                self.disconnect(session)
            elif session.offer(message):
                delivered += 1
            else:
                # an open session only refuses a message on overflow
                self.stats.overflow_disconnects += 1
                logger.warning(
                    "gate.session_overflow",
                    namespace=self.namespace,
                    session_id=session.id,
                )
                self.disconnect(session)
        self.stats.broadcasts += 1
        return delivered

    async def close(self) -> None:
        """Disconnect every session (shutdown)."""
        for session in list(self._sessions.values()):
            self.disconnect(session)

    def get_stats(self) -> dict:
        return {
            "namespace": self.namespace,
            "sessions": len(self._sessions),
            "connected": self.stats.connected,
            "disconnected": self.stats.disconnected,
            "broadcasts": self.stats.broadcasts,
            "overflow_disconnects": self.stats.overflow_disconnects,
        }
