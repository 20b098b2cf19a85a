"""WebSocket endpoint, the viewer side of the broadcast gate.

Learn: Each client connects to the socket path (PIXELMAP_SOCKET_PATH,
/api/v1/socket by default). create_app() registers pixel_socket there.
The handler:
1. Optionally authenticates via ?token=JWT (PIXELMAP_SOCKET_REQUIRE_AUTH)
2. Registers a ViewerSession with the gate
3. Runs a sender task draining the session queue to the socket
4. Runs a client listener answering pings

All outbound frames go through the session queue, so the socket has a
single writer. Every frame is {"event": ..., "data": ...} except the
{"type": "pong"} reply to a client ping.
"""

import asyncio
import json

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from pixelmap.auth.jwt import TokenError, verify_token

logger = structlog.get_logger()


async def pixel_socket(websocket: WebSocket):
    """Stream newPixel events to one viewer until either side hangs up."""
    canvas = websocket.app.state.canvas

    # ── Authentication ──────────────────────────────────────
    if canvas.settings.socket_require_auth:
        token = websocket.query_params.get("token")
        if not token:
            await websocket.close(code=4001, reason="Authentication required")
            return
        try:
            verify_token(token)
        except TokenError:
            await websocket.close(code=4001, reason="Invalid or expired token")
            return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()

    gate = canvas.gate
    session = gate.open_session()
    gate.connect(session)
    log = logger.bind(session_id=session.id)

    async def client_listener():
        """Answer pings; anything else from the client is ignored."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    session.offer({"type": "pong"})
        except WebSocketDisconnect:
            pass

    sender_task = asyncio.create_task(session.pump(websocket.send_json))
    client_task = asyncio.create_task(client_listener())

    try:
        done, pending = await asyncio.wait(
            [sender_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                log.info("socket.closed_with_error", error=str(task.exception()))
    finally:
        gate.disconnect(session)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
