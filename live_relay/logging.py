"""Structured logging for Live Relay.

structlog renders through stdlib logging, so uvicorn, the provider SDK and
the relay share one handler. Format and level come from ``LoggingSettings``
(``RELAY_LOG_FORMAT``, ``RELAY_LOG_LEVEL``).

Every line carries ``component``. Lines emitted while a relay connection is
served also carry its ``session_id``: ``session_context`` binds it in
contextvars, and tasks the session spawns (connect, watchdog, upstream
receive pump) inherit it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from live_relay.config.settings import LoggingSettings

if TYPE_CHECKING:
    from collections.abc import Iterator

# Chatty at INFO: full setup frames and per-request lines.
_QUIET_LOGGERS = ("google_genai", "websockets", "httpx")

_configured = False


def _install_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _install_handler(settings: LoggingSettings) -> None:
    if settings.log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure structured logging for the relay.

    Without ``settings`` the environment is read, once; later calls are
    ignored. Passing ``settings`` always reinstalls the handler, which is how
    ``live-relay serve`` applies its ``--log-*`` options after the modules
    (and their loggers) are already imported.

    Args:
        settings: Explicit format and level. Default: ``LoggingSettings()``.
    """
    global _configured
    if _configured and settings is None:
        return

    invalid: ValidationError | None = None
    if settings is None:
        try:
            settings = LoggingSettings()
        except ValidationError as exc:
            invalid = exc
            settings = LoggingSettings.model_construct()

    if not _configured:
        _install_structlog()
    _install_handler(settings)
    _configured = True

    if invalid is not None:
        get_logger("logging").warning(
            "invalid_logging_env",
            errors=[e["msg"] for e in invalid.errors()],
            log_format=settings.log_format,
            level=settings.level,
        )


@contextmanager
def session_context(session_id: str) -> Iterator[None]:
    """Attach ``session_id`` to every line logged inside the block."""
    with structlog.contextvars.bound_contextvars(session_id=session_id):
        yield


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Return a logger with component context.

    Args:
        component: Component name (e.g., "relay.session", "upstream.gemini").
    """
    configure_logging()
    return structlog.get_logger().bind(component=component)  # type: ignore[no-any-return]
