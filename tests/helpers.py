"""Shared test doubles for relay tests.

Usage:
    from tests.helpers import FakeDownstream, FakeUpstreamConnector, settle
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from live_relay.relay.downstream import DownstreamChannel
from live_relay.upstream.interface import (
    SubmitText,
    UpstreamConnector,
    UpstreamSession,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from live_relay.relay.protocol import ServerEvent
    from live_relay.upstream.interface import (
        LiveSessionConfig,
        UpstreamCallbacks,
        UpstreamDirective,
    )


async def settle(rounds: int = 10) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeDownstream(DownstreamChannel):
    """Records events sent to the client."""

    def __init__(self, *, send_error: Exception | None = None) -> None:
        self.events: list[ServerEvent] = []
        self.close_calls = 0
        self.send_error = send_error

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def dumps(self) -> list[dict[str, Any]]:
        return [e.model_dump(mode="json") for e in self.events]

    async def send(self, event: ServerEvent) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.events.append(event)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1


class FakeUpstreamSession(UpstreamSession):
    """Upstream handle driven by the test through open/respond/fail/end."""

    def __init__(self, callbacks: UpstreamCallbacks, *, echo: bool = False) -> None:
        self.callbacks = callbacks
        self.echo = echo
        self.sent: list[UpstreamDirective] = []
        self.close_calls = 0
        self.send_error: Exception | None = None

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def send(self, directive: UpstreamDirective) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(directive)
        if self.echo and isinstance(directive, SubmitText):
            await self.callbacks.on_response({"text": f"echo: {directive.text}"})

    async def close(self) -> None:
        self.close_calls += 1

    async def open(self) -> None:
        await self.callbacks.on_open()

    async def respond(self, event: Mapping[str, Any]) -> None:
        await self.callbacks.on_response(event)

    async def fail(self, exc: BaseException) -> None:
        await self.callbacks.on_error(exc)

    async def end(self, reason: str = "remote closed") -> None:
        await self.callbacks.on_close(reason)


class FakeUpstreamConnector(UpstreamConnector):
    """Connector returning ``FakeUpstreamSession`` handles.

    Args:
        auto_open: Signal open right after ``connect`` returns.
        after_connect: Coroutine run (as a task) on the new session after
            ``connect`` returns; overrides ``auto_open``.
        connect_error: Raised from ``connect``.
        block: Make ``connect`` wait until ``release()`` is called.
        echo: Sessions answer every text turn with an ``echo:`` response.
    """

    def __init__(
        self,
        *,
        auto_open: bool = False,
        after_connect: Callable[[FakeUpstreamSession], Awaitable[None]] | None = None,
        connect_error: Exception | None = None,
        block: bool = False,
        echo: bool = False,
    ) -> None:
        self.auto_open = auto_open
        self.after_connect = after_connect
        self.connect_error = connect_error
        self.block = block
        self.echo = echo
        self.connect_calls = 0
        self.cancelled = False
        self.configs: list[LiveSessionConfig] = []
        self.sessions: list[FakeUpstreamSession] = []
        self._gate: asyncio.Event | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def session(self) -> FakeUpstreamSession:
        """The most recent session."""
        return self.sessions[-1]

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()

    async def connect(
        self,
        config: LiveSessionConfig,
        callbacks: UpstreamCallbacks,
    ) -> FakeUpstreamSession:
        self.connect_calls += 1
        self.configs.append(config)
        if self.connect_error is not None:
            raise self.connect_error
        if self.block:
            self._gate = asyncio.Event()
            try:
                await self._gate.wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise

        session = FakeUpstreamSession(callbacks, echo=self.echo)
        self.sessions.append(session)
        if self.after_connect is not None:
            self._tasks.append(asyncio.create_task(self.after_connect(session)))
        elif self.auto_open:
            self._tasks.append(asyncio.create_task(session.open()))
        return session
