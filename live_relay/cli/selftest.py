"""`live-relay selftest` command: checks that a live session can be opened."""

from __future__ import annotations

import asyncio
import json
import sys

import click

from live_relay.cli.main import cli


@cli.command()
@click.option("--model", default=None, help="Override LIVE_MODEL.")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the session to open.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON.")
def selftest(model: str | None, timeout: float | None, as_json: bool) -> None:
    """Open a text-only Gemini Live session and report whether it opened."""
    import dataclasses

    from live_relay.config.relay import relay_config_from_settings
    from live_relay.diagnostics.selftest import run_selftest
    from live_relay.upstream.gemini import GeminiLiveConnector

    config = relay_config_from_settings()
    if model:
        config = dataclasses.replace(config, model=model)
    connector = GeminiLiveConnector.from_config(config)

    result = asyncio.run(run_selftest(connector, config, timeout_s=timeout))

    if as_json:
        click.echo(json.dumps(result.to_dict()))
    elif result.ok:
        click.echo(f"ok: {result.model} opened in {result.ms} ms")
    else:
        click.echo(f"Error [{result.stage}]: {result.error}", err=True)

    if not result.ok:
        sys.exit(1)
