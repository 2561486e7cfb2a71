"""Connectivity self-test: can a live session be opened right now?

Opens a short-lived, text-only upstream session and reports whether it
signalled open within the timeout. The session handle is always released.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from live_relay.exceptions import MissingCredentialError
from live_relay.logging import get_logger
from live_relay.upstream.interface import UpstreamCallbacks

if TYPE_CHECKING:
    from collections.abc import Mapping

    from live_relay.config.relay import RelayConfig
    from live_relay.upstream.interface import UpstreamConnector, UpstreamSession

logger = get_logger("diagnostics.selftest")

SelfTestStage = Literal["timeout", "onError", "connect-catch", "no-key"]


@dataclass(frozen=True, slots=True)
class SelfTestResult:
    """Outcome of one self-test run. ``stage`` and ``error`` are set when not ok."""

    ok: bool
    model: str
    ms: int
    stage: SelfTestStage | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok, "model": self.model, "ms": self.ms}
        if not self.ok:
            body["stage"] = self.stage
            body["error"] = self.error
        return body


async def run_selftest(
    connector: UpstreamConnector,
    config: RelayConfig,
    timeout_s: float | None = None,
) -> SelfTestResult:
    """Open a text-only live session and wait for it to signal open.

    Args:
        connector: Upstream connector to test.
        config: Relay configuration (model, credential, default timeout).
        timeout_s: Override for ``config.selftest_timeout_s``.
    """
    timeout = timeout_s if timeout_s is not None else config.selftest_timeout_s
    started = time.monotonic()

    def _result(stage: SelfTestStage | None = None, error: str | None = None) -> SelfTestResult:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return SelfTestResult(
            ok=stage is None, model=config.model, ms=elapsed_ms, stage=stage, error=error
        )

    if not config.has_key:
        return _result("no-key", str(MissingCredentialError()))

    outcome: asyncio.Future[tuple[SelfTestStage | None, str | None]] = (
        asyncio.get_running_loop().create_future()
    )

    def _settle(stage: SelfTestStage | None, error: str | None = None) -> None:
        if not outcome.done():
            outcome.set_result((stage, error))

    async def on_open() -> None:
        _settle(None)

    async def on_error(exc: BaseException) -> None:
        _settle("onError", str(exc) or type(exc).__name__)

    async def on_close(reason: str) -> None:
        _settle("onError", f"Live session closed before open: {reason}")

    async def on_response(event: Mapping[str, Any]) -> None:
        return None

    callbacks = UpstreamCallbacks(
        on_open=on_open, on_response=on_response, on_error=on_error, on_close=on_close
    )
    handle: UpstreamSession | None = None

    async def _attempt() -> tuple[SelfTestStage | None, str | None]:
        nonlocal handle
        handle = await connector.connect(config.live.text_only(), callbacks)
        return await outcome

    try:
        stage, error = await asyncio.wait_for(_attempt(), timeout)
    except asyncio.TimeoutError:
        stage, error = "timeout", f"Live open timed out ({timeout:g}s)"
    except Exception as exc:
        stage, error = "connect-catch", str(exc) or type(exc).__name__
    finally:
        if handle is not None:
            try:
                await handle.close()
            except Exception:
                logger.debug("selftest_close_failed", exc_info=True)

    result = _result(stage, error)
    if result.ok:
        logger.info("selftest_ok", model=result.model, ms=result.ms)
    else:
        logger.warning(
            "selftest_failed", model=result.model, stage=result.stage, error=result.error
        )
    return result
