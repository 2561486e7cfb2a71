"""FastAPI application factory for Live Relay."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

import live_relay
from live_relay.config.relay import relay_config_from_settings
from live_relay.config.settings import get_settings
from live_relay.server.routes import health, relay
from live_relay.upstream.gemini import GeminiLiveConnector

if TYPE_CHECKING:
    from live_relay.config.relay import RelayConfig
    from live_relay.config.settings import DiagnosticsSettings
    from live_relay.upstream.interface import UpstreamConnector


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a unique request_id to each HTTP request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def create_app(
    relay_config: RelayConfig | None = None,
    connector: UpstreamConnector | None = None,
    cors_origins: list[str] | None = None,
    diagnostics: DiagnosticsSettings | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        relay_config: Relay configuration (default: built from environment).
        connector: Upstream connector (default: Gemini Live for ``relay_config``).
        cors_origins: List of allowed CORS origins (optional).
        diagnostics: Probe targets for ``/diag`` (default: from environment).

    Returns:
        Configured FastAPI application.
    """
    if relay_config is None:
        relay_config = relay_config_from_settings()
    if connector is None:
        connector = GeminiLiveConnector.from_config(relay_config)
    if diagnostics is None:
        diagnostics = get_settings().diagnostics

    app = FastAPI(
        title="Live Relay",
        version=live_relay.__version__,
        description="WebSocket relay between browser clients and Gemini Live",
    )

    app.state.relay_config = relay_config
    app.state.connector = connector
    app.state.diagnostics = diagnostics

    if cors_origins:
        from fastapi.middleware.cors import CORSMiddleware

        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router)
    # Catch-all routes: must stay last.
    app.include_router(relay.router)

    return app
