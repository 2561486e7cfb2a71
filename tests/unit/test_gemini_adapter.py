"""Tests for the google-genai Live adapter (SDK mocked at the session or websocket level)."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors as genai_errors
from google.genai import live, types
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from live_relay._types import ResponseModality
from live_relay.config.relay import RelayConfig
from live_relay.exceptions import UpstreamConnectError, UpstreamError
from live_relay.relay.session import RelaySession
from live_relay.upstream.gemini import (
    GeminiLiveConnector,
    build_connect_config,
    classify_connect_error,
)
from live_relay.upstream.interface import (
    LiveSessionConfig,
    SetSystemInstruction,
    SubmitText,
    UpstreamCallbacks,
)
from tests.helpers import FakeDownstream, settle

_HANG = object()


class _FakeLive:
    """Stand-in for the SDK AsyncSession.

    Each ``receive()`` call consumes one script entry: a list of messages,
    an exception to raise, or ``_HANG`` to block forever.
    """

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.send_client_content = AsyncMock()

    def receive(self) -> Any:
        return self._receive()

    async def _receive(self) -> Any:
        entry = self._script.pop(0) if self._script else _HANG
        if entry is _HANG:
            await asyncio.Event().wait()
        if isinstance(entry, BaseException):
            raise entry
        for message in entry:
            yield message


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def callbacks(self) -> UpstreamCallbacks:
        async def on_open() -> None:
            self.calls.append(("open", None))

        async def on_response(event: Any) -> None:
            self.calls.append(("response", event))

        async def on_error(exc: BaseException) -> None:
            self.calls.append(("error", exc))

        async def on_close(reason: str) -> None:
            self.calls.append(("close", reason))

        return UpstreamCallbacks(
            on_open=on_open, on_response=on_response, on_error=on_error, on_close=on_close
        )

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]


def _client_for(live: _FakeLive) -> tuple[MagicMock, dict[str, Any]]:
    seen: dict[str, Any] = {"exited": False}

    @asynccontextmanager
    async def _connect(*, model: str, config: types.LiveConnectConfig):  # type: ignore[no-untyped-def]
        seen["model"] = model
        seen["config"] = config
        try:
            yield live
        finally:
            seen["exited"] = True

    client = MagicMock()
    client.aio.live.connect = _connect
    return client, seen


def _text_message(text: str) -> types.LiveServerMessage:
    return types.LiveServerMessage(
        server_content=types.LiveServerContent(
            model_turn=types.Content(role="model", parts=[types.Part(text=text)])
        )
    )


def _closed_ok() -> ConnectionClosedOK:
    return ConnectionClosedOK(Close(1000, "bye"), Close(1000, "bye"), rcvd_then_sent=True)


class TestBuildConnectConfig:
    def test_default_config(self) -> None:
        config = build_connect_config(LiveSessionConfig())

        assert config.response_modalities == [types.Modality.AUDIO, types.Modality.TEXT]
        assert config.session_resumption is not None
        assert config.proactivity is not None
        assert config.proactivity.proactive_audio is False
        assert config.output_audio_transcription is not None
        assert config.system_instruction is None

    def test_text_only_has_no_transcription(self) -> None:
        config = build_connect_config(LiveSessionConfig().text_only())

        assert config.response_modalities == [types.Modality.TEXT]
        assert config.output_audio_transcription is None

    def test_system_instruction_and_no_resumption(self) -> None:
        live = LiveSessionConfig(
            response_modalities=(ResponseModality.TEXT,),
            session_resumption=False,
            system_instruction="Be terse.",
        )
        config = build_connect_config(live)

        assert config.session_resumption is None
        assert config.system_instruction.parts[0].text == "Be terse."  # type: ignore[union-attr]


class TestClassifyConnectError:
    def test_timeout(self) -> None:
        err = classify_connect_error(TimeoutError(), "m")
        assert err.kind == "timeout"
        assert err.reason == "TimeoutError"

    def test_policy_close_is_rejected(self) -> None:
        exc = ConnectionClosedError(Close(1008, "API key not valid"), None)
        err = classify_connect_error(exc, "m")
        assert err.kind == "rejected"
        assert "API key not valid" in str(err)

    def test_other(self) -> None:
        err = classify_connect_error(ValueError("bad"), "m")
        assert err.kind == "other"
        assert str(err) == "Live connect failed for model 'm' (other): bad"

    def test_already_wrapped_passes_through(self) -> None:
        original = UpstreamConnectError("m", "x", "rejected")
        assert classify_connect_error(original, "m") is original


class TestConnect:
    async def test_connect_then_open_then_responses(self) -> None:
        live = _FakeLive([[_text_message("hi")], _closed_ok()])
        client, seen = _client_for(live)
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "gemini-test-live", client=client)

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        assert recorder.calls == []
        await settle()

        assert seen["model"] == "gemini-test-live"
        assert recorder.kinds() == ["open", "response", "close"]
        event = recorder.calls[1][1]
        assert event["server_content"]["model_turn"]["parts"] == [{"text": "hi"}]
        await handle.close()
        assert seen["exited"]

    async def test_control_messages_are_not_forwarded(self) -> None:
        control = [
            types.LiveServerMessage(setup_complete=types.LiveServerSetupComplete()),
            types.LiveServerMessage(
                session_resumption_update=types.LiveServerSessionResumptionUpdate(
                    new_handle="h1", resumable=True
                )
            ),
        ]
        live = _FakeLive([control, _HANG])
        client, _ = _client_for(live)
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "m", client=client)

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        await settle()

        assert recorder.kinds() == ["open"]
        await handle.close()

    async def test_receive_error_is_recoverable(self) -> None:
        live = _FakeLive([RuntimeError("glitch"), [_text_message("after")], _HANG])
        client, _ = _client_for(live)
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "m", client=client)

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        await settle()

        assert recorder.kinds() == ["open", "error", "response"]
        await handle.close()

    async def test_abnormal_close_reports_error_then_close(self) -> None:
        live = _FakeLive([ConnectionClosedError(Close(1011, "internal"), None)])
        client, _ = _client_for(live)
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "m", client=client)

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        await settle()

        assert recorder.kinds() == ["open", "error", "close"]
        await handle.close()

    async def test_close_stops_pump_without_close_callback(self) -> None:
        live = _FakeLive([_HANG])
        client, seen = _client_for(live)
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "m", client=client)

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        await settle()
        await handle.close()
        await handle.close()

        assert recorder.kinds() == ["open"]
        assert seen["exited"]
        assert handle.closed

    async def test_connect_failure_is_classified_and_cleaned_up(self) -> None:
        @asynccontextmanager
        async def _refuse(**kwargs: Any):  # type: ignore[no-untyped-def]
            raise ConnectionClosedError(Close(1008, "model not found"), None)
            yield

        client = MagicMock()
        client.aio.live.connect = _refuse
        connector = GeminiLiveConnector("k", "m", client=client)

        with pytest.raises(UpstreamConnectError) as excinfo:
            await connector.connect(LiveSessionConfig(), _Recorder().callbacks())

        assert excinfo.value.kind == "rejected"


class TestSend:
    async def _open(self) -> tuple[Any, _FakeLive]:
        live = _FakeLive([_HANG])
        client, _ = _client_for(live)
        connector = GeminiLiveConnector("k", "m", client=client)
        handle = await connector.connect(LiveSessionConfig(), _Recorder().callbacks())
        return handle, live

    async def test_submit_text_completes_turn(self) -> None:
        handle, live = await self._open()

        await handle.send(SubmitText("hello"))

        kwargs = live.send_client_content.await_args.kwargs
        assert kwargs["turn_complete"] is True
        assert kwargs["turns"].role == "user"
        assert kwargs["turns"].parts[0].text == "hello"
        await handle.close()

    async def test_system_instruction_does_not_complete_turn(self) -> None:
        handle, live = await self._open()

        await handle.send(SetSystemInstruction("Be terse."))

        kwargs = live.send_client_content.await_args.kwargs
        assert kwargs["turn_complete"] is False
        assert kwargs["turns"].parts[0].text == "Be terse."
        await handle.close()

    async def test_send_after_close_raises(self) -> None:
        handle, _ = await self._open()
        await handle.close()

        with pytest.raises(UpstreamError):
            await handle.send(SubmitText("late"))

    async def test_send_on_dead_socket_raises_upstream_error(self) -> None:
        handle, live = await self._open()
        live.send_client_content.side_effect = _closed_ok()

        with pytest.raises(UpstreamError, match="closed while sending"):
            await handle.send(SubmitText("x"))
        await handle.close()


def test_client_is_created_lazily() -> None:
    connector = GeminiLiveConnector(api_key=None, model="m")
    assert connector.model == "m"
    assert connector._client is None


class _ScriptedSocket:
    """Websocket under a real SDK ``AsyncSession``: frames, then a close."""

    def __init__(self, frames: list[dict[str, Any]], close: Exception) -> None:
        self._frames = [json.dumps(frame).encode() for frame in frames]
        self._close = close
        self.recv_calls = 0

    async def recv(self, decode: bool | None = None) -> bytes:
        self.recv_calls += 1
        if self._frames:
            return self._frames.pop(0)
        raise self._close


def _sdk_client_for(socket: _ScriptedSocket) -> MagicMock:
    @asynccontextmanager
    async def _connect(*, model: str, config: types.LiveConnectConfig):  # type: ignore[no-untyped-def]
        yield live.AsyncSession(api_client=MagicMock(vertexai=False), websocket=socket)

    client = MagicMock()
    client.aio.live.connect = _connect
    return client


_TURN_FRAME = {
    "serverContent": {
        "modelTurn": {"role": "model", "parts": [{"text": "hi"}]},
        "turnComplete": True,
    }
}


class TestSdkSocketClose:
    async def test_normal_close_reports_close_once(self) -> None:
        socket = _ScriptedSocket([_TURN_FRAME], _closed_ok())
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "m", client=_sdk_client_for(socket))

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        await settle()

        assert recorder.kinds() == ["open", "response", "close"]
        assert recorder.calls[-1] == ("close", "1000 bye")
        assert socket.recv_calls == 2
        await handle.close()

    async def test_abnormal_close_reports_error_then_close(self) -> None:
        socket = _ScriptedSocket([], ConnectionClosedError(Close(1011, "internal"), None))
        recorder = _Recorder()
        connector = GeminiLiveConnector("k", "m", client=_sdk_client_for(socket))

        handle = await connector.connect(LiveSessionConfig(), recorder.callbacks())
        await settle()

        assert recorder.kinds() == ["open", "error", "close"]
        assert isinstance(recorder.calls[1][1], genai_errors.APIError)
        assert recorder.calls[2] == ("close", "1011 internal")
        assert socket.recv_calls == 1
        await handle.close()

    async def test_relay_session_sees_closed_status(self, relay_config: RelayConfig) -> None:
        socket = _ScriptedSocket([], _closed_ok())
        connector = GeminiLiveConnector("k", "m", client=_sdk_client_for(socket))
        downstream = FakeDownstream()
        session = RelaySession(downstream, connector, relay_config)

        await session.start()
        await settle(30)

        assert downstream.dumps() == [
            {"type": "status", "value": "open"},
            {"type": "status", "value": "closed"},
        ]
        assert session.close_reason == "live closed"
