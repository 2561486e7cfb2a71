"""Immutable per-process relay configuration.

``RelayConfig`` is built once from settings and handed to every
``RelaySession``; sessions never read the environment themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from live_relay.config.settings import DEFAULT_LIVE_MODEL, get_settings
from live_relay.upstream.interface import LiveSessionConfig

if TYPE_CHECKING:
    from live_relay.config.settings import RelaySettings

_MIN_TIMEOUT_S = 0.01


@dataclass(frozen=True, slots=True)
class RelayConfig:
    """Configuration shared (read-only) by all relay sessions.

    Raises:
        ValueError: If a timeout is not positive or the error limit is < 1.
    """

    api_key: str | None = None
    model: str = DEFAULT_LIVE_MODEL
    api_version: str = "v1alpha"
    connect_timeout_s: float = 12.0
    max_upstream_errors: int = 3
    selftest_timeout_s: float = 12.0
    live: LiveSessionConfig = field(default_factory=LiveSessionConfig)

    def __post_init__(self) -> None:
        for field_name in ("connect_timeout_s", "selftest_timeout_s"):
            value = getattr(self, field_name)
            if value < _MIN_TIMEOUT_S:
                msg = f"Timeout '{field_name}' must be >= {_MIN_TIMEOUT_S}s, got {value}s"
                raise ValueError(msg)
        if self.max_upstream_errors < 1:
            msg = f"max_upstream_errors must be >= 1, got {self.max_upstream_errors}"
            raise ValueError(msg)

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)


def relay_config_from_settings(settings: RelaySettings | None = None) -> RelayConfig:
    """Build a ``RelayConfig`` from (cached) environment settings."""
    s = settings or get_settings()
    return RelayConfig(
        api_key=s.live.api_key,
        model=s.live.model,
        api_version=s.live.api_version,
        connect_timeout_s=s.live.connect_timeout_s,
        max_upstream_errors=s.live.max_upstream_errors,
        selftest_timeout_s=s.diagnostics.selftest_timeout_s,
    )
