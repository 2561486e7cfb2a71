"""Centralized configuration via pydantic-settings.

Environment variables are read, validated, and exposed here. The names
follow the deployment conventions of the relay (``PORT``, ``HOST``,
``LIVE_MODEL``, ``GEMINI_API_KEY``); tuning knobs use the ``RELAY_`` prefix.
``LoggingSettings`` is also read on its own by ``live_relay.logging``,
before the rest of the configuration is needed.

Usage::

    from live_relay.config.settings import get_settings

    settings = get_settings()
    print(settings.server.port)        # int, validated
    print(settings.live.has_key)       # bool

``.env`` files in the working directory are loaded automatically.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LIVE_MODEL = "gemini-2.0-flash-live-001"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def parse_origins(value: str) -> list[str]:
    """Split a comma-separated origin list, dropping blanks."""
    return [o.strip() for o in value.split(",") if o.strip()]


class ServerSettings(BaseSettings):
    """HTTP/WebSocket listener settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    host: str = Field(default="0.0.0.0", validation_alias="HOST")  # noqa: S104
    port: int = Field(
        default=8788,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("PORT", "RELAY_PORT"),
    )
    cors_origins: str = Field(default="", validation_alias="RELAY_CORS_ORIGINS")

    @property
    def cors_origins_list(self) -> list[str]:
        """CORS origins as a list (parsed from comma-separated string)."""
        return parse_origins(self.cors_origins)


class LiveSettings(BaseSettings):
    """Upstream live session settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    model: str = Field(default=DEFAULT_LIVE_MODEL, validation_alias="LIVE_MODEL")
    api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    api_version: str = Field(default="v1alpha", validation_alias="RELAY_API_VERSION")
    connect_timeout_s: float = Field(
        default=12.0, gt=0, le=120, validation_alias="RELAY_CONNECT_TIMEOUT_S"
    )
    max_upstream_errors: int = Field(
        default=3, ge=1, le=1000, validation_alias="RELAY_MAX_UPSTREAM_ERRORS"
    )

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @property
    def has_key(self) -> bool:
        """Whether a provider credential is configured."""
        return bool(self.api_key)


class DiagnosticsSettings(BaseSettings):
    """Targets and timeouts for ``/selftest`` and ``/diag``."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    selftest_timeout_s: float = Field(
        default=12.0, gt=0, le=120, validation_alias="RELAY_SELFTEST_TIMEOUT_S"
    )
    probe_timeout_s: float = Field(
        default=8.0, gt=0, le=60, validation_alias="RELAY_DIAG_TIMEOUT_S"
    )
    dns_host: str = Field(
        default="generativelanguage.googleapis.com", validation_alias="RELAY_DIAG_HOST"
    )
    https_url: str = Field(
        default="https://generativelanguage.googleapis.com/",
        validation_alias="RELAY_DIAG_HTTPS_URL",
    )
    ws_echo_url: str = Field(
        default="wss://echo.websocket.org/", validation_alias="RELAY_DIAG_WS_ECHO_URL"
    )

    @model_validator(mode="after")
    def _probe_lt_selftest(self) -> DiagnosticsSettings:
        if self.probe_timeout_s > self.selftest_timeout_s:
            msg = "probe_timeout_s must be <= selftest_timeout_s"
            raise ValueError(msg)
        return self


class LoggingSettings(BaseSettings):
    """Log format and level."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    log_format: Literal["console", "json"] = Field(
        default="console", validation_alias="RELAY_LOG_FORMAT"
    )
    level: str = Field(default="INFO", validation_alias="RELAY_LOG_LEVEL")

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in LOG_LEVELS:
            msg = f"level must be one of {', '.join(LOG_LEVELS)}"
            raise ValueError(msg)
        return value


class RelaySettings(BaseSettings):
    """Root settings: aggregates all subsystem settings.

    Loads ``.env`` from the current directory when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    live: LiveSettings = Field(default_factory=LiveSettings)
    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Return the singleton ``RelaySettings`` instance.

    The result is cached: subsequent calls return the same object.
    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    return RelaySettings()
