"""Shared fixtures for all tests."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

# Ensure repo root is on sys.path so tests can import the `live_relay` package
# when running pytest from the repository root without an editable install.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from live_relay.config.relay import RelayConfig  # noqa: E402
from live_relay.config.settings import get_settings  # noqa: E402

_RELAY_ENV_VARS = (
    "HOST",
    "PORT",
    "RELAY_PORT",
    "LIVE_MODEL",
    "GEMINI_API_KEY",
    "RELAY_API_VERSION",
    "RELAY_CONNECT_TIMEOUT_S",
    "RELAY_MAX_UPSTREAM_ERRORS",
    "RELAY_SELFTEST_TIMEOUT_S",
    "RELAY_DIAG_TIMEOUT_S",
    "RELAY_DIAG_HOST",
    "RELAY_DIAG_HTTPS_URL",
    "RELAY_DIAG_WS_ECHO_URL",
    "RELAY_CORS_ORIGINS",
    "RELAY_LOG_FORMAT",
    "RELAY_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Run every test without ambient relay env vars or a stray .env file."""
    for name in _RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def relay_config() -> RelayConfig:
    """Config with a credential and short timeouts."""
    return RelayConfig(
        api_key="test-key",
        model="gemini-test-live",
        connect_timeout_s=2.0,
        selftest_timeout_s=2.0,
    )
