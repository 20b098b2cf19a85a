"""Real-time infrastructure: PostgreSQL change feed + WebSocket broadcast.

Learn: Events flow through one path:
1. REST write → COMMIT → trigger → pg_notify('pixel_changes')
2. ChangeFeedWatcher (LISTEN) → PixelEvent → BroadcastGate → WebSocket

The watcher never sees uncommitted writes, so every broadcast is backed
by durable state.
"""
