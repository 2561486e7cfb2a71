"""Client-facing JSON protocol of the relay.

Defines the client->relay messages and relay->client events as Pydantic
models, and ``parse_client_message`` which turns a raw WebSocket text frame
into a typed result: a parsed message or an error event.

Client -> relay::

    {"type": "setup", "systemInstruction": "..."}
    {"type": "text", "text": "..."}
    {"type": "end"}

Relay -> client::

    {"type": "status", "value": "open" | "closed"}
    {"type": "text", "text": "..."}
    {"type": "audio", "encoding": "mp3/base64", "data": "..."}
    {"type": "error", "message": "..."}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from live_relay.logging import get_logger

logger = get_logger("relay.protocol")

# ---------------------------------------------------------------------------
# Client -> relay messages
# ---------------------------------------------------------------------------


class SetupMessage(BaseModel):
    """Sets the system instruction of the live session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["setup"] = "setup"
    system_instruction: str = Field(alias="systemInstruction", min_length=1)


class TextMessage(BaseModel):
    """A user text turn."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class EndMessage(BaseModel):
    """Client asks the relay to end the session."""

    model_config = ConfigDict(frozen=True)

    type: Literal["end"] = "end"


ClientMessage = SetupMessage | TextMessage | EndMessage

_MESSAGE_TYPES: dict[str, type[ClientMessage]] = {
    "setup": SetupMessage,
    "text": TextMessage,
    "end": EndMessage,
}

# ---------------------------------------------------------------------------
# Relay -> client events
# ---------------------------------------------------------------------------


class StatusEvent(BaseModel):
    """Upstream session status change."""

    model_config = ConfigDict(frozen=True)

    type: Literal["status"] = "status"
    value: Literal["open", "closed"]


class TextEvent(BaseModel):
    """Text produced by the model."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class AudioEvent(BaseModel):
    """Audio produced by the model, base64-encoded."""

    model_config = ConfigDict(frozen=True)

    type: Literal["audio"] = "audio"
    encoding: str = "mp3/base64"
    data: str


class ErrorEvent(BaseModel):
    """Any error reported to the client."""

    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    message: str


ServerEvent = StatusEvent | TextEvent | AudioEvent | ErrorEvent

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MessageResult:
    """Parse result: a valid client message."""

    message: ClientMessage


@dataclass(frozen=True, slots=True)
class ErrorResult:
    """Parse result: the frame was rejected; the session continues."""

    event: ErrorEvent


ParseResult = MessageResult | ErrorResult


def parse_client_message(raw: str | bytes) -> ParseResult:
    """Parse one client frame into a typed message.

    Flow:
        1. Decode bytes as UTF-8.
        2. Deserialize JSON; require an object.
        3. Look up the model by ``type``.
        4. Validate against the Pydantic model.

    Never raises: every failure is an ``ErrorResult``.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("undecodable_frame", error=str(exc))
            return ErrorResult(event=ErrorEvent(message=f"Invalid frame encoding: {exc}"))

    # 1. Parse JSON
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("malformed_json", error=str(exc), raw=raw[:200])
        return ErrorResult(event=ErrorEvent(message=f"Invalid JSON: {exc}"))

    if not isinstance(data, dict):
        logger.warning("invalid_message_format", raw=raw[:200])
        return ErrorResult(
            event=ErrorEvent(message="Expected JSON object, got " + type(data).__name__)
        )

    # 2. Extract type
    message_type = data.get("type")
    if message_type is None:
        logger.warning("missing_type_field", data_keys=list(data.keys()))
        return ErrorResult(event=ErrorEvent(message="Missing required field: 'type'"))

    # 3. Lookup message class
    message_class = _MESSAGE_TYPES.get(message_type) if isinstance(message_type, str) else None
    if message_class is None:
        logger.warning("unknown_message_type", message_type=message_type)
        return ErrorResult(event=ErrorEvent(message=f"Unknown message type: {message_type!r}"))

    # 4. Validate
    try:
        message = message_class.model_validate(data)
    except pydantic.ValidationError as exc:
        logger.warning("message_validation_error", message_type=message_type, error=str(exc))
        return ErrorResult(
            event=ErrorEvent(message=f"Validation error for '{message_type}': {exc}")
        )

    return MessageResult(message=message)
