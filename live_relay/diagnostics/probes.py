"""Network probes behind ``/diag``: DNS, HTTPS reachability, WebSocket echo.

Each probe returns a ``ProbeResult`` and never raises; ``run_diagnostics``
runs them concurrently together with the self-test.
"""

from __future__ import annotations

import asyncio
import socket
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import websockets

from live_relay.diagnostics.selftest import run_selftest
from live_relay.logging import get_logger

if TYPE_CHECKING:
    from live_relay.config.relay import RelayConfig
    from live_relay.config.settings import DiagnosticsSettings
    from live_relay.diagnostics.selftest import SelfTestResult
    from live_relay.upstream.interface import UpstreamConnector

logger = get_logger("diagnostics.probes")


@dataclass(frozen=True, slots=True)
class ProbeResult:
    ok: bool
    ms: int
    error: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok, "ms": self.ms, **self.detail}
        if self.error is not None:
            body["error"] = self.error
        return body


@dataclass(frozen=True, slots=True)
class DiagnosticsReport:
    dns: ProbeResult
    https: ProbeResult
    ws: ProbeResult
    selftest: SelfTestResult

    @property
    def ok(self) -> bool:
        """True when at least one sub-probe succeeded."""
        return self.dns.ok or self.https.ok or self.ws.ok or self.selftest.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "dns": self.dns.to_dict(),
            "https": self.https.to_dict(),
            "ws": self.ws.to_dict(),
            "selftest": self.selftest.to_dict(),
        }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


async def probe_dns(host: str, timeout_s: float) -> ProbeResult:
    """Resolve ``host`` and list its addresses."""
    started = time.monotonic()
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM), timeout_s
        )
    except Exception as exc:
        return ProbeResult(False, _elapsed_ms(started), _describe(exc), {"host": host})
    addresses = sorted({info[4][0] for info in infos})
    return ProbeResult(True, _elapsed_ms(started), detail={"host": host, "addresses": addresses})


async def probe_https(
    url: str,
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProbeResult:
    """GET ``url``; any HTTP response counts as reachable."""
    started = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
            response = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return ProbeResult(False, _elapsed_ms(started), _describe(exc), {"url": url})
    return ProbeResult(
        True, _elapsed_ms(started), detail={"url": url, "status": response.status_code}
    )


async def probe_ws_echo(url: str, timeout_s: float) -> ProbeResult:
    """Open a WebSocket to an echo server and wait for our token to come back.

    Echo servers may send a greeting first; frames are read until the token
    is seen or the timeout expires.
    """
    started = time.monotonic()
    token = f"live-relay-{uuid.uuid4().hex[:8]}"

    async def _roundtrip() -> None:
        async with websockets.connect(url, open_timeout=timeout_s) as ws:
            await ws.send(token)
            while True:
                reply = await ws.recv()
                if reply == token:
                    return

    try:
        await asyncio.wait_for(_roundtrip(), timeout_s)
    except Exception as exc:
        return ProbeResult(False, _elapsed_ms(started), _describe(exc), {"url": url})
    return ProbeResult(True, _elapsed_ms(started), detail={"url": url})


async def run_diagnostics(
    connector: UpstreamConnector,
    config: RelayConfig,
    settings: DiagnosticsSettings,
) -> DiagnosticsReport:
    """Run every probe concurrently and aggregate the results."""
    timeout = settings.probe_timeout_s
    dns, https, ws, selftest = await asyncio.gather(
        probe_dns(settings.dns_host, timeout),
        probe_https(settings.https_url, timeout),
        probe_ws_echo(settings.ws_echo_url, timeout),
        run_selftest(connector, config, settings.selftest_timeout_s),
    )
    report = DiagnosticsReport(dns=dns, https=https, ws=ws, selftest=selftest)
    logger.info(
        "diagnostics_complete",
        ok=report.ok,
        dns=dns.ok,
        https=https.ok,
        ws=ws.ok,
        selftest=selftest.ok,
    )
    return report
