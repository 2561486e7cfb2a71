"""Core types for Live Relay.

Enums and type aliases shared by the relay core, the upstream adapter and
the HTTP layer.
"""

from __future__ import annotations

from enum import Enum


class RelayState(Enum):
    """State of a relay session.

    Valid transitions:
        CONNECTING -> READY (upstream signalled open)
        CONNECTING -> CLOSED (no key, setup error, timeout, client gone)
        READY -> CLOSED (any terminal event)
    """

    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class ResponseModality(Enum):
    """Response modality requested from the upstream live session."""

    TEXT = "TEXT"
    AUDIO = "AUDIO"


class Direction(Enum):
    """Direction of a relayed message (metrics label)."""

    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"
