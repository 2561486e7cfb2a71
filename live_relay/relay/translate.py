"""Translation between the client protocol and upstream directives/events.

Client messages become ``UpstreamDirective`` values; upstream responses
(plain mappings, as produced by the upstream adapter) become zero, one or
two client events: ``text`` and ``audio`` are extracted independently.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from live_relay.logging import get_logger
from live_relay.relay.protocol import AudioEvent, SetupMessage, TextEvent, TextMessage
from live_relay.upstream.interface import SetSystemInstruction, SubmitText

if TYPE_CHECKING:
    from collections.abc import Callable

    from live_relay.relay.protocol import ServerEvent
    from live_relay.upstream.interface import UpstreamDirective

logger = get_logger("relay.translate")

_MISSING = object()


def to_directive(message: SetupMessage | TextMessage) -> UpstreamDirective:
    """Translate a forwardable client message into an upstream directive."""
    if isinstance(message, SetupMessage):
        return SetSystemInstruction(instruction=message.system_instruction)
    return SubmitText(text=message.text)


def _dig(obj: Any, *path: str | int) -> Any:
    """Follow mapping keys / sequence indices; ``_MISSING`` on any mismatch."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(obj, Sequence) or isinstance(obj, (str, bytes)):
                return _MISSING
            if not -len(obj) <= step < len(obj):
                return _MISSING
            obj = obj[step]
        else:
            if not isinstance(obj, Mapping) or step not in obj:
                return _MISSING
            obj = obj[step]
        if obj is None:
            return _MISSING
    return obj


def _join_part_texts(parts: Any) -> str | None:
    if parts is _MISSING or not isinstance(parts, Sequence):
        return None
    texts = [
        p["text"] for p in parts if isinstance(p, Mapping) and isinstance(p.get("text"), str)
    ]
    return " ".join(t for t in texts if t) or None


def _as_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


# Fixed priority order; the first non-empty result wins.
_TEXT_EXTRACTORS: tuple[Callable[[Mapping[str, Any]], str | None], ...] = (
    lambda e: _as_text(_dig(e, "text")),
    lambda e: _join_part_texts(_dig(e, "server_content", "model_turn", "parts")),
    lambda e: _join_part_texts(_dig(e, "response", "output", 0, "content", "parts")),
    lambda e: _join_part_texts(_dig(e, "response", "candidates", 0, "content", "parts")),
    lambda e: _as_text(_dig(e, "server_content", "output_transcription", "text")),
)


def extract_text(event: Mapping[str, Any]) -> str | None:
    """Return the text carried by an upstream response, if any."""
    for extractor in _TEXT_EXTRACTORS:
        text = extractor(event)
        if text:
            return text
    return None


def _encode_audio(data: Any) -> str | None:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(data)).decode("ascii") if len(data) else None
    # Strings are already base64 from the provider.
    if isinstance(data, str) and data:
        return data
    return None


def extract_audio(event: Mapping[str, Any]) -> str | None:
    """Return the audio payload of an upstream response as base64, if any.

    Inline parts that are not valid base64 are skipped; the rest still count.
    """
    direct = _encode_audio(_dig(event, "audio", "data"))
    if direct is not None:
        return direct

    parts = _dig(event, "server_content", "model_turn", "parts")
    if parts is _MISSING or not isinstance(parts, Sequence):
        return None
    chunks = bytearray()
    for part in parts:
        data = _dig(part, "inline_data", "data")
        if isinstance(data, (bytes, bytearray)):
            chunks.extend(data)
        elif isinstance(data, str) and data:
            try:
                chunks.extend(base64.b64decode(data, validate=True))
            except binascii.Error as exc:
                logger.warning("audio_part_undecodable", length=len(data), error=str(exc))
    return _encode_audio(chunks)


def response_events(
    event: Mapping[str, Any],
    audio_encoding: str = "mp3/base64",
) -> list[ServerEvent]:
    """Translate one upstream response into client events (text first)."""
    events: list[ServerEvent] = []
    text = extract_text(event)
    if text:
        events.append(TextEvent(text=text))
    audio = extract_audio(event)
    if audio:
        events.append(AudioEvent(encoding=audio_encoding, data=audio))
    return events
