"""`live-relay serve` command: starts the relay server."""

from __future__ import annotations

import asyncio
import contextlib
import signal

import click

from live_relay.cli.main import cli
from live_relay.config.settings import LOG_LEVELS, LoggingSettings, get_settings, parse_origins
from live_relay.logging import configure_logging, get_logger

logger = get_logger("cli.serve")


def _default_host() -> str:
    return get_settings().server.host


def _default_port() -> int:
    return get_settings().server.port


def _default_cors() -> str:
    return get_settings().server.cors_origins


def _default_log_format() -> str:
    return get_settings().logging.log_format


def _default_log_level() -> str:
    return get_settings().logging.level


@cli.command()
@click.option("--host", default=_default_host, show_default="HOST or 0.0.0.0", help="Bind host.")
@click.option(
    "--port",
    default=_default_port,
    type=int,
    show_default="PORT, RELAY_PORT or 8788",
    help="HTTP/WebSocket port.",
)
@click.option(
    "--cors-origins",
    default=_default_cors,
    help="CORS origins (comma-separated). Ex: http://localhost:3000",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    default=_default_log_format,
    show_default="RELAY_LOG_FORMAT or console",
    help="Log format.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=_default_log_level,
    show_default="RELAY_LOG_LEVEL or INFO",
    help="Log level.",
)
def serve(
    host: str,
    port: int,
    cors_origins: str,
    log_format: str,
    log_level: str,
) -> None:
    """Starts the relay server."""
    configure_logging(LoggingSettings(log_format=log_format, level=log_level))
    asyncio.run(_serve(host, port, cors_origins=parse_origins(cors_origins)))


async def _serve(
    host: str,
    port: int,
    *,
    cors_origins: list[str] | None = None,
) -> None:
    """Main async flow for serve."""
    import uvicorn

    from live_relay.config.relay import relay_config_from_settings
    from live_relay.server.app import create_app

    relay_config = relay_config_from_settings()
    if not relay_config.has_key:
        logger.warning("no_credential", hint="Set GEMINI_API_KEY; connections will be refused")

    app = create_app(relay_config=relay_config, cors_origins=cors_origins)
    logger.info("server_starting", host=host, port=port, model=relay_config.model)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(s: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=s.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle_signal, sig)

    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)

    server_task = asyncio.create_task(server.serve())
    signal_task = asyncio.create_task(shutdown_event.wait())

    await asyncio.wait([server_task, signal_task], return_when=asyncio.FIRST_COMPLETED)

    if not signal_task.done():
        signal_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await signal_task

    if not server_task.done():
        server.should_exit = True
        await server_task

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.remove_signal_handler(sig)

    logger.info("server_stopped")
