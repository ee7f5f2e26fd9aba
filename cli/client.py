from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for a running export service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_state(self) -> Dict[str, Any]:
        try:
            response = self._client.get("/exports/state")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def download_export(self, destination: Path) -> int:
        """Stream the latest export into ``destination``; returns bytes written."""
        staging = destination.with_name(destination.name + ".partial")
        written = 0
        try:
            with self._client.stream("GET", "/exports/latest") as response:
                if response.status_code == 404:
                    raise typer.BadParameter("The service has not published an export yet.")
                if response.is_error:
                    response.read()
                    response.raise_for_status()
                with staging.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        handle.write(chunk)
                        written += len(chunk)
            staging.replace(destination)
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        finally:
            if staging.exists():
                staging.unlink()
        return written

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
