from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_result, render_state
from datastore.export_state import build_default_state_store
from logging_config import configure_logging
from services.pipeline import ExportInProgressError, ExportRunError, build_default_pipeline


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Build and inspect the cluster-ordered radiation map export.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Export service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds for commands that talk to the service.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Override LOG_LEVEL for this invocation.",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging(log_level.upper() if log_level else None)
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("run")
def run_command() -> None:
    """Recompute the export if new measurements arrived since the last one."""
    pipeline = build_default_pipeline()
    try:
        result = pipeline.run()
    except ExportInProgressError as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=1)
    except ExportRunError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    render_result(result.model_dump(mode="json"))


@app.command("state")
def state_command(
    ctx: typer.Context,
    remote: bool = typer.Option(
        False,
        "--remote/--local",
        help="Ask the running service instead of reading the local checkpoint.",
    ),
) -> None:
    """Show the last export checkpoint."""
    if remote:
        payload = _get_state(ctx).client.get_state()
        render_state(payload.get("state"))
        return
    state = build_default_state_store().load()
    render_state(state.model_dump(mode="json") if state else None)


@app.command("reset")
def reset_command(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Forget the checkpoint so the next run recomputes unconditionally."""
    if not yes:
        typer.confirm("Clear the export checkpoint?", abort=True)
    build_default_state_store().reset()
    typer.secho("Export checkpoint cleared.", fg=typer.colors.GREEN)


@app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    destination: Path = typer.Argument(..., dir_okay=False, help="Where to save the export."),
) -> None:
    """Download the latest published export from the service."""
    state = _get_state(ctx)
    typer.echo(f"Downloading export from {state.config.base_url} ...")
    written = state.client.download_export(destination)
    typer.secho(f"Saved {written} bytes to {destination}", fg=typer.colors.GREEN)
