"""Prometheus metrics for relay sessions.

Defined metrics:
- live_relay_active_sessions: Gauge of open relay sessions
- live_relay_sessions_closed_total: Counter of closed sessions by shutdown reason
- live_relay_messages_total: Counter of relayed messages by direction
- live_relay_upstream_connect_seconds: Time from connect request to upstream open
- live_relay_session_duration_seconds: Total duration of closed sessions
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

relay_active_sessions = Gauge(
    "live_relay_active_sessions",
    "Number of open relay sessions",
)

relay_sessions_closed_total = Counter(
    "live_relay_sessions_closed_total",
    "Closed relay sessions by shutdown reason",
    ["reason"],
)

relay_messages_total = Counter(
    "live_relay_messages_total",
    "Messages relayed by direction",
    ["direction"],
)

relay_upstream_connect_seconds = Histogram(
    "live_relay_upstream_connect_seconds",
    "Time from upstream connect request to session open",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0),
)

relay_session_duration_seconds = Histogram(
    "live_relay_session_duration_seconds",
    "Total duration of closed relay sessions",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800),
)
