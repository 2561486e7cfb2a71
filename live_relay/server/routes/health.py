"""Health, self-test, diagnostics and metrics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import live_relay
from live_relay.diagnostics.probes import run_diagnostics
from live_relay.diagnostics.selftest import run_selftest

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def healthz(request: Request) -> dict[str, Any]:
    """Liveness: always ok; reports the model and whether a key is set."""
    config = request.app.state.relay_config
    return {
        "ok": True,
        "version": live_relay.__version__,
        "model": config.model,
        "hasKey": config.has_key,
    }


@router.get("/selftest")
async def selftest(request: Request) -> JSONResponse:
    """Open a short text-only live session. 200 if it opened, else 500."""
    result = await run_selftest(request.app.state.connector, request.app.state.relay_config)
    return JSONResponse(result.to_dict(), status_code=200 if result.ok else 500)


@router.get("/diag")
async def diag(request: Request) -> JSONResponse:
    """DNS, HTTPS, WebSocket echo and self-test. 200 if any succeeded, else 500."""
    state = request.app.state
    report = await run_diagnostics(state.connector, state.relay_config, state.diagnostics)
    return JSONResponse(report.to_dict(), status_code=200 if report.ok else 500)


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
