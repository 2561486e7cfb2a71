"""Live Relay CLI.

Registers every command on the main group.
"""

from live_relay.cli.main import cli
from live_relay.cli.selftest import selftest
from live_relay.cli.serve import serve

__all__ = ["cli", "selftest", "serve"]
