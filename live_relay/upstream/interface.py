"""Abstract interface for upstream live sessions.

The relay core talks to the inference provider exclusively through this
contract. An adapter implements ``UpstreamConnector`` for a concrete SDK
(see ``live_relay.upstream.gemini``); tests plug in fakes.

Inbound events are delivered through ``UpstreamCallbacks``:

- ``on_open()``: the session is ready to accept directives.
- ``on_response(event)``: a structured response, as a plain mapping.
- ``on_error(exc)``: a non-fatal runtime error.
- ``on_close(reason)``: the session ended; no further callbacks follow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from live_relay._types import ResponseModality

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Audio encoding and sample rate for one direction of the session."""

    encoding: str
    sample_rate_hz: int

    @property
    def transport_label(self) -> str:
        """Label sent to clients next to base64 audio (e.g. ``mp3/base64``)."""
        return f"{self.encoding.lower()}/base64"


@dataclass(frozen=True, slots=True)
class LiveSessionConfig:
    """Fixed configuration requested when opening an upstream session."""

    response_modalities: tuple[ResponseModality, ...] = (
        ResponseModality.AUDIO,
        ResponseModality.TEXT,
    )
    input_audio: AudioFormat = AudioFormat("LINEAR16", 16000)
    output_audio: AudioFormat = AudioFormat("MP3", 24000)
    session_resumption: bool = True
    proactivity: bool = False
    system_instruction: str | None = None

    def text_only(self) -> LiveSessionConfig:
        """Copy of this config that asks for text responses only."""
        return LiveSessionConfig(
            response_modalities=(ResponseModality.TEXT,),
            input_audio=self.input_audio,
            output_audio=self.output_audio,
            session_resumption=self.session_resumption,
            proactivity=self.proactivity,
            system_instruction=self.system_instruction,
        )


# --- Directives (relay -> upstream) ---


@dataclass(frozen=True, slots=True)
class SetSystemInstruction:
    """Directive: apply a system instruction to the live session."""

    instruction: str


@dataclass(frozen=True, slots=True)
class SubmitText:
    """Directive: submit a complete user text turn."""

    text: str


UpstreamDirective = SetSystemInstruction | SubmitText


@dataclass(frozen=True, slots=True)
class UpstreamCallbacks:
    """Event sinks an upstream session reports into."""

    on_open: Callable[[], Awaitable[None]]
    on_response: Callable[[Mapping[str, Any]], Awaitable[None]]
    on_error: Callable[[BaseException], Awaitable[None]]
    on_close: Callable[[str], Awaitable[None]]


class UpstreamSession(ABC):
    """Handle to one open upstream live session."""

    @abstractmethod
    async def send(self, directive: UpstreamDirective) -> None:
        """Send one directive to the provider.

        Raises:
            UpstreamError: If the directive could not be delivered.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the session. Idempotent."""
        ...


class UpstreamConnector(ABC):
    """Factory for upstream live sessions."""

    @abstractmethod
    async def connect(
        self,
        config: LiveSessionConfig,
        callbacks: UpstreamCallbacks,
    ) -> UpstreamSession:
        """Open a live session.

        The returned handle is usable once ``callbacks.on_open`` fires.
        ``on_open`` is never invoked before this coroutine has returned.

        Raises:
            UpstreamConnectError: If the session could not be established.
        """
        ...
