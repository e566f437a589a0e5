from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

CHANNEL_COLUMNS = ("BOD", "COD", "Flow", "PH", "TSS")


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return "-" if value is None else str(value)


def render_reading(payload: Dict[str, Any]) -> None:
    echo_heading("Reading")
    echo_key_values(
        [
            ("id", payload.get("id")),
            ("timestamp", payload.get("timestamp")),
            ("raw_timestamp", payload.get("raw_timestamp")),
        ]
    )
    if payload.get("timestamp_fallback"):
        typer.secho("timestamp could not be parsed; read time shown", fg=typer.colors.YELLOW)
    measurements = payload.get("measurements") or {}
    for name in CHANNEL_COLUMNS:
        typer.echo(f"  - {name}: {_format_value(measurements.get(name))}")


def render_history(payload: Dict[str, Any]) -> None:
    echo_heading(f"History for {payload.get('device_id')}")
    echo_key_values(
        [
            ("start_date", payload.get("start_date")),
            ("end_date", payload.get("end_date")),
        ]
    )
    error = payload.get("error")
    if error:
        typer.secho(f"warning: {error} (data may be stale)", fg=typer.colors.YELLOW, err=True)

    readings = payload.get("readings") or []
    typer.echo()
    if not readings:
        typer.echo("No readings available.")
        return

    typer.echo("\t".join(("timestamp",) + CHANNEL_COLUMNS))
    for reading in readings:
        measurements = reading.get("measurements") or {}
        cells = [str(reading.get("raw_timestamp"))]
        cells.extend(_format_value(measurements.get(name)) for name in CHANNEL_COLUMNS)
        typer.echo("\t".join(cells))
    typer.echo()
    typer.echo(f"{len(readings)} reading(s)")
