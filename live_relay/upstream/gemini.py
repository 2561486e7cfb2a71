"""Upstream adapter for the Gemini Live API (``google-genai`` SDK).

``GeminiLiveConnector.connect()`` enters ``client.aio.live.connect(...)``
and returns a ``GeminiLiveSession`` whose receive pump reports into the
relay's ``UpstreamCallbacks``. The pump is started only after ``connect()``
has returned, so ``on_open`` always follows the handle assignment.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from live_relay._types import ResponseModality
from live_relay.exceptions import UpstreamConnectError, UpstreamError
from live_relay.logging import get_logger
from live_relay.upstream.interface import (
    SetSystemInstruction,
    SubmitText,
    UpstreamConnector,
    UpstreamSession,
)

if TYPE_CHECKING:
    from live_relay.config.relay import RelayConfig
    from live_relay.upstream.interface import (
        LiveSessionConfig,
        UpstreamCallbacks,
        UpstreamDirective,
    )

logger = get_logger("upstream.gemini")

# Server messages made only of these keys carry no client-visible content.
_CONTROL_KEYS = frozenset(
    {"setup_complete", "session_resumption_update", "usage_metadata", "go_away"}
)

_NORMAL_CLOSURE = 1000
_ABNORMAL_CLOSURE = 1006


def build_connect_config(config: LiveSessionConfig) -> types.LiveConnectConfig:
    """Translate a ``LiveSessionConfig`` into the SDK connect config."""
    kwargs: dict[str, Any] = {
        "response_modalities": [types.Modality(m.value) for m in config.response_modalities],
        "proactivity": types.ProactivityConfig(proactive_audio=config.proactivity),
    }
    if config.session_resumption:
        kwargs["session_resumption"] = types.SessionResumptionConfig()
    if ResponseModality.AUDIO in config.response_modalities:
        kwargs["output_audio_transcription"] = types.AudioTranscriptionConfig()
    if config.system_instruction:
        kwargs["system_instruction"] = types.Content(
            parts=[types.Part(text=config.system_instruction)]
        )
    return types.LiveConnectConfig(**kwargs)


def classify_connect_error(exc: BaseException, model: str) -> UpstreamConnectError:
    """Wrap a connect failure, tagging it as timeout, rejected or other."""
    if isinstance(exc, UpstreamConnectError):
        return exc
    reason = str(exc) or type(exc).__name__
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return UpstreamConnectError(model, reason, kind="timeout")
    if isinstance(exc, (InvalidHandshake, ConnectionClosed, genai_errors.APIError)):
        return UpstreamConnectError(model, reason, kind="rejected")
    return UpstreamConnectError(model, reason)


def close_details(exc: ConnectionClosed | genai_errors.APIError) -> tuple[int, str]:
    """Close code and reason of a terminated Live socket."""
    if isinstance(exc, genai_errors.APIError):
        detail = exc.details if isinstance(exc.details, str) else exc.message
        return exc.code or _ABNORMAL_CLOSURE, detail or str(exc)
    if exc.rcvd is not None:
        return exc.rcvd.code, exc.rcvd.reason or "closed"
    return _ABNORMAL_CLOSURE, "connection lost"


def _user_turn(text: str) -> types.Content:
    return types.Content(role="user", parts=[types.Part(text=text)])


class GeminiLiveSession(UpstreamSession):
    """One open Gemini Live session plus its receive pump."""

    def __init__(
        self,
        session: Any,
        exit_stack: contextlib.AsyncExitStack,
        callbacks: UpstreamCallbacks,
        model: str,
    ) -> None:
        self._session = session
        self._exit_stack = exit_stack
        self._callbacks = callbacks
        self._model = model
        self._pump_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start delivering callbacks. Called once, after connect returns."""
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump())

    async def send(self, directive: UpstreamDirective) -> None:
        if self._closed:
            msg = f"Live session for model '{self._model}' is closed"
            raise UpstreamError(msg)
        try:
            if isinstance(directive, SubmitText):
                await self._session.send_client_content(
                    turns=_user_turn(directive.text),
                    turn_complete=True,
                )
            elif isinstance(directive, SetSystemInstruction):
                # Connect-time config is fixed; later instructions go in as
                # context that does not trigger a model turn.
                await self._session.send_client_content(
                    turns=_user_turn(directive.instruction),
                    turn_complete=False,
                )
            else:
                msg = f"Unsupported directive: {type(directive).__name__}"
                raise UpstreamError(msg)
        except ConnectionClosed as exc:
            msg = f"Live session closed while sending: {exc}"
            raise UpstreamError(msg) from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task = self._pump_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._exit_stack.aclose()
        logger.debug("live_session_released", model=self._model)

    async def _pump(self) -> None:
        try:
            await self._callbacks.on_open()
            while not self._closed:
                try:
                    async for message in self._session.receive():
                        await self._dispatch(message)
                        if self._closed:
                            return
                except (ConnectionClosed, genai_errors.APIError):
                    raise
                except Exception as exc:
                    if self._closed:
                        return
                    logger.warning("live_receive_error", model=self._model, error=str(exc))
                    await self._callbacks.on_error(exc)
        except (ConnectionClosed, genai_errors.APIError) as exc:
            # A dead socket surfaces from the SDK as APIError(close code, reason).
            await self._finish(exc)

    async def _finish(self, exc: ConnectionClosed | genai_errors.APIError) -> None:
        if self._closed:
            return
        code, reason = close_details(exc)
        logger.info("live_stream_closed", model=self._model, code=code, reason=reason)
        if code != _NORMAL_CLOSURE:
            await self._callbacks.on_error(exc)
        await self._callbacks.on_close(f"{code} {reason}")

    async def _dispatch(self, message: types.LiveServerMessage) -> None:
        event = message.model_dump(exclude_none=True)
        if event.keys() <= _CONTROL_KEYS:
            self._on_control_message(event)
            return
        await self._callbacks.on_response(event)

    def _on_control_message(self, event: dict[str, Any]) -> None:
        """Setup acks, resumption handles, usage and go-away notices.

        Nothing is forwarded to the client; resumption handles are not used
        to reconnect.
        """
        if "go_away" in event:
            logger.info("live_go_away", model=self._model, go_away=event["go_away"])
        else:
            logger.debug("live_control_message", model=self._model, keys=sorted(event))


class GeminiLiveConnector(UpstreamConnector):
    """Opens Gemini Live sessions for one model with one API key.

    The SDK client is created on first connect so an app without a key can
    still start and serve diagnostics.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str,
        api_version: str = "v1alpha",
        client: genai.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._api_version = api_version
        self._client = client

    @classmethod
    def from_config(cls, config: RelayConfig) -> GeminiLiveConnector:
        return cls(api_key=config.api_key, model=config.model, api_version=config.api_version)

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                api_key=self._api_key,
                http_options=types.HttpOptions(api_version=self._api_version),
            )
        return self._client

    async def connect(
        self,
        config: LiveSessionConfig,
        callbacks: UpstreamCallbacks,
    ) -> GeminiLiveSession:
        exit_stack = contextlib.AsyncExitStack()
        try:
            client = self._get_client()
            session = await exit_stack.enter_async_context(
                client.aio.live.connect(model=self._model, config=build_connect_config(config))
            )
        except Exception as exc:
            await exit_stack.aclose()
            raise classify_connect_error(exc, self._model) from exc

        logger.info("live_session_connected", model=self._model)
        handle = GeminiLiveSession(session, exit_stack, callbacks, self._model)
        handle.start()
        return handle
