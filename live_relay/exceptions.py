"""Typed exceptions for Live Relay.

Hierarchy:
    RelayError (base)
    +-- ConfigError
    |   +-- MissingCredentialError
    +-- SessionError
    |   +-- InvalidTransitionError
    +-- UpstreamError
        +-- UpstreamConnectError
        +-- UpstreamTimeoutError
"""

from __future__ import annotations

from typing import Literal

UpstreamFailureKind = Literal["timeout", "rejected", "other"]


class RelayError(Exception):
    """Base for all Live Relay exceptions."""


# --- Configuration ---


class ConfigError(RelayError):
    """Relay configuration error."""


class MissingCredentialError(ConfigError):
    """No provider credential is configured.

    Fatal for the connection that needs it, never for the process.
    """

    def __init__(self, env_var: str = "GEMINI_API_KEY") -> None:
        self.env_var = env_var
        super().__init__(f"{env_var} missing on relay")


# --- Session ---


class SessionError(RelayError):
    """Relay session error."""


class InvalidTransitionError(SessionError):
    """Invalid state transition in the relay state machine."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state} -> {to_state}")


# --- Upstream ---


class UpstreamError(RelayError):
    """Error talking to the upstream live session."""


class UpstreamConnectError(UpstreamError):
    """Upstream session could not be established.

    ``kind`` separates handshake timeouts, rejections by the provider
    (bad key, unknown model, policy close) and everything else.
    """

    def __init__(self, model: str, reason: str, kind: UpstreamFailureKind = "other") -> None:
        self.model = model
        self.reason = reason
        self.kind = kind
        super().__init__(f"Live connect failed for model '{model}' ({kind}): {reason}")


class UpstreamTimeoutError(UpstreamError):
    """Upstream session did not open within the connect timeout."""

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Live connect timed out ({timeout_s:g}s) on relay")
