"""RelaySession: one browser connection relayed to one upstream live session.

The session owns both ends for its whole life:

- Client frames are parsed and, once the upstream is READY, translated and
  forwarded. Until then they wait in ``pending`` and are drained, in arrival
  order, the moment the upstream opens.
- Upstream events are translated into client events.
- Every terminal event (client ``end`` or disconnect, upstream close,
  connect timeout, setup failure, too many upstream errors) funnels into
  ``shutdown()``, which only the first caller gets to run.

All mutation happens on the event loop; ``_forward_lock`` serializes drains
and live forwards so await points cannot reorder directives.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from typing import TYPE_CHECKING, Any

from live_relay._types import Direction, RelayState
from live_relay.exceptions import MissingCredentialError, UpstreamTimeoutError
from live_relay.logging import get_logger
from live_relay.relay.metrics import (
    relay_active_sessions,
    relay_messages_total,
    relay_session_duration_seconds,
    relay_sessions_closed_total,
    relay_upstream_connect_seconds,
)
from live_relay.relay.protocol import (
    EndMessage,
    ErrorEvent,
    ErrorResult,
    SetupMessage,
    StatusEvent,
    TextMessage,
    parse_client_message,
)
from live_relay.relay.state_machine import RelayStateMachine
from live_relay.relay.translate import response_events, to_directive
from live_relay.upstream.interface import UpstreamCallbacks

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from live_relay.config.relay import RelayConfig
    from live_relay.relay.downstream import DownstreamChannel
    from live_relay.relay.protocol import ClientMessage, ServerEvent
    from live_relay.upstream.interface import UpstreamConnector, UpstreamSession

logger = get_logger("relay.session")

ForwardableMessage = SetupMessage | TextMessage


def describe_error(exc: BaseException | str) -> str:
    """Stringify an error for the client ``message`` field."""
    if isinstance(exc, str):
        return exc
    return str(exc) or type(exc).__name__


class RelaySession:
    """Relay between one downstream client and one upstream live session.

    Args:
        downstream: Channel to the browser client.
        connector: Factory for upstream sessions.
        config: Immutable relay configuration.
        session_id: Optional id for log correlation.
        clock: Monotonic clock (for deterministic tests).
    """

    def __init__(
        self,
        downstream: DownstreamChannel,
        connector: UpstreamConnector,
        config: RelayConfig,
        *,
        session_id: str | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._session_id = session_id or f"relay_{uuid.uuid4().hex[:12]}"
        self._downstream = downstream
        self._connector = connector
        self._config = config
        self._clock = clock or time.monotonic

        self._closed_event = asyncio.Event()
        self._machine = RelayStateMachine(
            on_enter={RelayState.CLOSED: self._closed_event.set},
            clock=self._clock,
        )
        self._pending: deque[ClientMessage] = deque()
        self._forward_lock = asyncio.Lock()
        self._upstream: UpstreamSession | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None
        self._connect_requested_at = 0.0
        self._consecutive_errors = 0
        self._close_reason: str | None = None
        self._started = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> RelayState:
        return self._machine.state

    @property
    def is_closed(self) -> bool:
        return self._machine.is_closed

    @property
    def close_reason(self) -> str | None:
        """Reason passed to the shutdown call that closed the session."""
        return self._close_reason

    @property
    def pending_count(self) -> int:
        """Client messages queued while the upstream is connecting."""
        return len(self._pending)

    async def wait_closed(self) -> None:
        """Block until the session has entered CLOSED."""
        await self._closed_event.wait()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin the upstream connect; returns without waiting for it.

        Without a credential the client gets an error and the session closes
        immediately; no upstream session is requested.
        """
        if self._started or self.is_closed:
            return
        self._started = True
        relay_active_sessions.inc()
        logger.info("relay_session_started", session_id=self._session_id, model=self._config.model)

        if not self._config.has_key:
            logger.warning("no_credential", session_id=self._session_id)
            await self._send_error(MissingCredentialError())
            await self.shutdown("no key")
            return

        self._connect_requested_at = self._clock()
        self._watchdog_task = asyncio.create_task(self._connect_watchdog())
        self._connect_task = asyncio.create_task(self._connect())

    async def shutdown(self, reason: str) -> None:
        """Close both sides exactly once. Later calls are no-ops."""
        if self.is_closed:
            return
        self._close_reason = reason
        self._machine.transition(RelayState.CLOSED)
        self._pending.clear()

        self._cancel_task(self._watchdog_task)
        self._cancel_task(self._connect_task)

        upstream, self._upstream = self._upstream, None
        if upstream is not None:
            try:
                await upstream.close()
            except Exception:
                logger.debug("upstream_close_failed", session_id=self._session_id, exc_info=True)

        try:
            await self._downstream.close()
        except Exception:
            logger.debug("downstream_close_failed", session_id=self._session_id, exc_info=True)

        duration_s = self._machine.age_s
        if self._started:
            relay_active_sessions.dec()
            relay_session_duration_seconds.observe(duration_s)
        relay_sessions_closed_total.labels(reason=reason).inc()
        logger.info(
            "relay_session_closed",
            session_id=self._session_id,
            reason=reason,
            duration_ms=int(duration_s * 1000),
        )

    # ------------------------------------------------------------------
    # Downstream -> upstream
    # ------------------------------------------------------------------

    async def handle_client_frame(self, raw: str | bytes) -> None:
        """Parse one client frame and act on it.

        Parse errors are reported to the client and never end the session.
        """
        if self.is_closed:
            return
        result = parse_client_message(raw)
        if isinstance(result, ErrorResult):
            await self._emit(result.event)
            return
        await self.handle_message(result.message)

    async def handle_message(self, message: ClientMessage) -> None:
        """Queue or act on an already-parsed client message.

        ``end`` waits in the queue like any other message, so frames sent
        before it still reach the upstream first.
        """
        if self.is_closed:
            return
        if not self._machine.can_forward:
            self._pending.append(message)
            return
        async with self._forward_lock:
            await self._drain_pending()
            if not self.is_closed:
                await self._act_on(message)

    async def _drain_pending(self) -> None:
        """Act on every queued message once, oldest first. Caller holds the lock."""
        batch, self._pending = self._pending, deque()
        for message in batch:
            if self.is_closed:
                return
            await self._act_on(message)

    async def _act_on(self, message: ClientMessage) -> None:
        if isinstance(message, EndMessage):
            await self.shutdown("client requested end")
            return
        await self._forward(message)

    async def _forward(self, message: ForwardableMessage) -> None:
        upstream = self._upstream
        if upstream is None:
            # READY is only entered after connect() returned the handle.
            logger.error("forward_without_upstream", session_id=self._session_id)
            return
        directive = to_directive(message)
        try:
            await upstream.send(directive)
        except Exception as exc:
            logger.warning(
                "upstream_send_failed",
                session_id=self._session_id,
                directive=type(directive).__name__,
                error=describe_error(exc),
            )
            await self._send_error(exc)
            await self.shutdown("upstream send failed")
            return
        relay_messages_total.labels(direction=Direction.UPSTREAM.value).inc()

    # ------------------------------------------------------------------
    # Upstream connect
    # ------------------------------------------------------------------

    async def _connect(self) -> None:
        callbacks = UpstreamCallbacks(
            on_open=self._on_upstream_open,
            on_response=self._on_upstream_response,
            on_error=self._on_upstream_error,
            on_close=self._on_upstream_close,
        )
        logger.info("upstream_connecting", session_id=self._session_id, model=self._config.model)
        try:
            upstream = await self._connector.connect(self._config.live, callbacks)
        except Exception as exc:
            if self.is_closed:
                return
            logger.warning(
                "upstream_setup_failed",
                session_id=self._session_id,
                error=describe_error(exc),
            )
            await self._send_error(exc)
            await self.shutdown("setup error")
            return

        if self.is_closed:
            # Closed while connecting: the late handle is never adopted.
            try:
                await upstream.close()
            except Exception:
                logger.debug("late_upstream_close_failed", session_id=self._session_id, exc_info=True)
            return
        self._upstream = upstream

    async def _connect_watchdog(self) -> None:
        timeout_s = self._config.connect_timeout_s
        await asyncio.sleep(timeout_s)
        if self._machine.state is not RelayState.CONNECTING:
            return
        logger.warning("upstream_connect_timeout", session_id=self._session_id, timeout_s=timeout_s)
        await self._send_error(UpstreamTimeoutError(timeout_s))
        await self.shutdown("connect timeout")

    # ------------------------------------------------------------------
    # Upstream -> downstream
    # ------------------------------------------------------------------

    async def _on_upstream_open(self) -> None:
        if self._machine.state is not RelayState.CONNECTING:
            logger.debug("upstream_open_ignored", session_id=self._session_id, state=self.state.value)
            return
        self._cancel_task(self._watchdog_task)
        connect_ms = self._machine.elapsed_in_state_ms
        self._machine.transition(RelayState.READY)
        relay_upstream_connect_seconds.observe(self._clock() - self._connect_requested_at)
        logger.info(
            "upstream_open",
            session_id=self._session_id,
            connect_ms=connect_ms,
            queued=len(self._pending),
        )
        await self._emit(StatusEvent(value="open"))
        async with self._forward_lock:
            await self._drain_pending()

    async def _on_upstream_response(self, event: Mapping[str, Any]) -> None:
        if self.is_closed:
            return
        self._consecutive_errors = 0
        try:
            events = response_events(event, self._config.live.output_audio.transport_label)
        except Exception as exc:
            logger.warning(
                "response_translation_failed",
                session_id=self._session_id,
                error=describe_error(exc),
            )
            await self._send_error(exc)
            return
        for server_event in events:
            await self._emit(server_event)
            relay_messages_total.labels(direction=Direction.DOWNSTREAM.value).inc()

    async def _on_upstream_error(self, exc: BaseException) -> None:
        if self.is_closed:
            return
        self._consecutive_errors += 1
        logger.warning(
            "upstream_error",
            session_id=self._session_id,
            error=describe_error(exc),
            consecutive=self._consecutive_errors,
        )
        await self._send_error(exc)
        limit = self._config.max_upstream_errors
        if self._consecutive_errors >= limit:
            await self._send_error(f"Too many upstream errors ({limit}); closing relay session")
            await self.shutdown("upstream error limit")

    async def _on_upstream_close(self, reason: str) -> None:
        if self.is_closed:
            return
        logger.info("upstream_closed", session_id=self._session_id, upstream_reason=reason)
        await self._emit(StatusEvent(value="closed"))
        await self.shutdown("live closed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _emit(self, event: ServerEvent) -> None:
        """Send an event to the client; a broken client ends the session."""
        if self.is_closed:
            return
        try:
            await self._downstream.send(event)
        except Exception as exc:
            logger.info(
                "downstream_send_failed",
                session_id=self._session_id,
                event_type=event.type,
                error=describe_error(exc),
            )
            await self.shutdown("downstream error")

    async def _send_error(self, exc: BaseException | str) -> None:
        await self._emit(ErrorEvent(message=describe_error(exc)))

    @staticmethod
    def _cancel_task(task: asyncio.Task[None] | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
