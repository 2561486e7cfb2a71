"""Main CLI command group for Live Relay."""

from __future__ import annotations

import click

import live_relay


@click.group()
@click.version_option(version=live_relay.__version__, prog_name="live-relay")
def cli() -> None:
    """Live Relay: WebSocket bridge to Gemini Live."""
