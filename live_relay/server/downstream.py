"""Starlette WebSocket as a relay ``DownstreamChannel``."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.websockets import WebSocketState

from live_relay.logging import get_logger
from live_relay.relay.downstream import DownstreamChannel

if TYPE_CHECKING:
    from fastapi import WebSocket

    from live_relay.relay.protocol import ServerEvent

logger = get_logger("server.downstream")


class WebSocketDownstream(DownstreamChannel):
    """Sends relay events as JSON text frames over an accepted WebSocket."""

    def __init__(self, websocket: WebSocket, session_id: str | None = None) -> None:
        self._websocket = websocket
        self._session_id = session_id

    @property
    def connected(self) -> bool:
        return self._websocket.client_state == WebSocketState.CONNECTED

    async def send(self, event: ServerEvent) -> None:
        if not self.connected:
            logger.debug(
                "send_event_skipped_not_connected",
                session_id=self._session_id,
                event_type=event.type,
            )
            return
        await self._websocket.send_json(event.model_dump(mode="json"))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.connected:
            await self._websocket.close(code=code, reason=reason)
