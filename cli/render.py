from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_result(payload: Dict[str, Any]) -> None:
    echo_heading("Export Run")
    echo_key_values(
        [
            ("run_id", payload.get("run_id")),
            ("status", payload.get("status")),
            ("started_at", payload.get("started_at")),
            ("finished_at", payload.get("finished_at")),
            ("processing_ms", payload.get("processing_ms")),
        ]
    )

    typer.echo()
    echo_heading("Counts")
    echo_key_values(
        [
            ("previous_max_id", payload.get("previous_max_id")),
            ("current_max_id", payload.get("current_max_id")),
            ("row_count", payload.get("row_count")),
            ("accepted_count", payload.get("accepted_count")),
            ("dropped_count", payload.get("dropped_count")),
            ("cell_count", payload.get("cell_count")),
        ]
    )

    if payload.get("object_key"):
        typer.echo()
        echo_heading("Output")
        echo_key_values(
            [
                ("object_key", payload.get("object_key")),
                ("export_format", payload.get("export_format")),
            ]
        )


def render_state(state: Dict[str, Any] | None) -> None:
    echo_heading("Export Checkpoint")
    if not state:
        typer.echo("No export has been recorded yet.")
        return
    echo_key_values(
        [
            ("last_max_id", state.get("last_max_id")),
            ("export_date", state.get("export_date")),
        ]
    )
