"""WS /{any path}: relay endpoint, plus the plain-text HTTP fallback."""

from __future__ import annotations

import asyncio
import contextlib
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from live_relay.logging import get_logger, session_context
from live_relay.relay.session import RelaySession
from live_relay.server.downstream import WebSocketDownstream

logger = get_logger("server.relay")

router = APIRouter(tags=["Relay"])


async def _pump_client(websocket: WebSocket, session: RelaySession) -> str:
    """Feed client frames into the session until the client goes away.

    Returns the shutdown reason to use.
    """
    while not session.is_closed:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return "client closed"
        raw = message.get("text")
        if raw is None:
            raw = message.get("bytes")
        if raw is None:
            continue
        await session.handle_client_frame(raw)
    return "client closed"


@router.websocket("/{path:path}")
async def relay_endpoint(websocket: WebSocket, path: str) -> None:
    """Relay one browser connection to one upstream live session."""
    session_id = f"relay_{uuid.uuid4().hex[:12]}"
    await websocket.accept()
    with session_context(session_id):
        logger.info("client_connected", path=f"/{path}")
        await _relay(websocket, session_id)


async def _relay(websocket: WebSocket, session_id: str) -> None:
    session = RelaySession(
        WebSocketDownstream(websocket, session_id),
        websocket.app.state.connector,
        websocket.app.state.relay_config,
        session_id=session_id,
    )
    await session.start()

    client_task = asyncio.create_task(_pump_client(websocket, session))
    closed_task = asyncio.create_task(session.wait_closed())
    reason = "client closed"
    try:
        await asyncio.wait({client_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        if client_task.done() and not client_task.cancelled():
            exc = client_task.exception()
            if exc is None:
                reason = client_task.result()
            elif not isinstance(exc, WebSocketDisconnect):
                logger.warning("client_error", error=str(exc))
                reason = "client error"
    finally:
        for task in (client_task, closed_task):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        await session.shutdown(reason)


@router.api_route("/{path:path}", methods=["GET", "HEAD", "POST"], include_in_schema=False)
async def relay_banner(path: str) -> PlainTextResponse:
    """Any other HTTP request gets a plain-text liveness string."""
    return PlainTextResponse("relay")
