from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_history, render_reading


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for reading device history from the wastewater history service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("history")
def history_command(
    ctx: typer.Context,
    device: Optional[str] = typer.Option(
        None, "--device", "-d", help="Device identifier (defaults to CLI_DEVICE_ID or RPi001)."
    ),
    start: Optional[datetime] = typer.Option(None, "--start", help="Earliest timestamp to include."),
    end: Optional[datetime] = typer.Option(None, "--end", help="Latest timestamp to include."),
) -> None:
    """Show a device's readings, newest first."""
    state = _get_state(ctx)
    if start is not None and end is not None and start > end:
        raise typer.BadParameter("--start must not be after --end.")
    device_id = device or state.config.device_id
    payload = state.client.get_history(device_id, start_date=start, end_date=end)
    render_history(payload)


@app.command("reading")
def reading_command(
    ctx: typer.Context,
    timestamp_key: str = typer.Argument(..., help="History key, e.g. 2024-01-01_10-00-00."),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Device identifier."),
) -> None:
    """Show a single reading by its history key."""
    state = _get_state(ctx)
    device_id = device or state.config.device_id
    payload = state.client.get_reading(device_id, timestamp_key)
    if payload is None:
        typer.secho(
            f"Reading {timestamp_key} not found for device {device_id}.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)
    render_reading(payload)
