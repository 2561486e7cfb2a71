"""Abstract interface for the client-facing connection of a relay session."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from live_relay.relay.protocol import ServerEvent


class DownstreamChannel(ABC):
    """Duplex channel to one browser client.

    Inbound frames are pushed into the session by the transport layer; the
    session only needs to send events and close.
    """

    @abstractmethod
    async def send(self, event: ServerEvent) -> None:
        """Send one event as a JSON text frame.

        Raises:
            Exception: Transport-specific failure; the session treats it as
                a downstream transport error.
        """
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the channel. May raise if it is already broken."""
        ...
