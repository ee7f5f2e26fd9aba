from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import pytest
from typer.testing import CliRunner

from app.schemas import ExportResult, ExportStatus
from cli.app import app
from datastore.export_state import ExportStateStore, build_default_state_store
from datastore.measurements import CsvMeasurementSource
from rules.loader import load_rules
from services.pipeline import ExportPipeline, ExportRunError
from settings import get_settings
from storage.export_bucket import ExportBucket


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.state_payload: Dict[str, Any] = {
            "state": {"last_max_id": 99, "export_date": "2024-01-01T00:00:00Z"},
            "object_key": "measurements_z13.csv",
            "available": True,
        }
        self.downloads: list[Path] = []
        self.closed = False

    def get_state(self) -> Dict[str, Any]:
        return self.state_payload

    def download_export(self, destination: Path) -> int:
        self.downloads.append(destination)
        destination.write_bytes(b"1,2,3\n")
        return 6

    def close(self) -> None:
        self.closed = True


class StubPipeline:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.runs = 0

    def run(self) -> ExportResult:
        self.runs += 1
        if self.error is not None:
            raise self.error
        return ExportResult(
            run_id="abc123",
            status=ExportStatus.exported,
            started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            finished_at=datetime(2024, 1, 1, 0, 7, tzinfo=timezone.utc),
            processing_ms=420000,
            previous_max_id=10,
            current_max_id=25,
            row_count=25,
            accepted_count=20,
            dropped_count=5,
            cell_count=12,
            object_key="measurements_z13.csv",
            export_format="csv",
        )


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub_client(monkeypatch) -> StubClient:
    stub = StubClient(config=None)

    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)
    monkeypatch.setattr("cli.app.configure_logging", lambda level=None: None)
    return stub


@pytest.fixture()
def local_state(monkeypatch, tmp_path):
    monkeypatch.setenv("EXPORT_STATE_PATH", str(tmp_path / "state.json"))
    get_settings.cache_clear()
    build_default_state_store.cache_clear()
    yield build_default_state_store()
    build_default_state_store.cache_clear()
    get_settings.cache_clear()


def test_run_renders_result(monkeypatch, runner: CliRunner, stub_client: StubClient) -> None:
    pipeline = StubPipeline()
    monkeypatch.setattr("cli.app.build_default_pipeline", lambda: pipeline)

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 0
    assert pipeline.runs == 1
    assert "Export Run" in result.stdout
    assert "status: exported" in result.stdout
    assert "cell_count: 12" in result.stdout
    assert "object_key: measurements_z13.csv" in result.stdout
    assert stub_client.closed is True


def test_run_failure_exits_non_zero(monkeypatch, runner: CliRunner, stub_client: StubClient) -> None:
    monkeypatch.setattr(
        "cli.app.build_default_pipeline",
        lambda: StubPipeline(error=ExportRunError("Export run x failed: boom")),
    )

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 1


def test_local_state(runner: CliRunner, stub_client: StubClient, local_state) -> None:
    empty = runner.invoke(app, ["state"])
    assert empty.exit_code == 0
    assert "No export has been recorded yet." in empty.stdout

    local_state.commit(321)
    result = runner.invoke(app, ["state"])

    assert result.exit_code == 0
    assert "last_max_id: 321" in result.stdout


def test_remote_state(runner: CliRunner, stub_client: StubClient) -> None:
    result = runner.invoke(app, ["--base-url", "http://exports.local:9000/", "state", "--remote"])

    assert result.exit_code == 0
    assert "last_max_id: 99" in result.stdout
    assert stub_client.config.base_url == "http://exports.local:9000"


def test_reset_requires_confirmation(runner: CliRunner, stub_client: StubClient, local_state) -> None:
    local_state.commit(321)

    aborted = runner.invoke(app, ["reset"], input="n\n")
    assert aborted.exit_code == 1
    assert local_state.last_max_id() == 321

    result = runner.invoke(app, ["reset", "--yes"])
    assert result.exit_code == 0
    assert "Export checkpoint cleared." in result.stdout
    assert local_state.load() is None


def test_fetch_downloads_export(runner: CliRunner, stub_client: StubClient, tmp_path) -> None:
    destination = tmp_path / "grid.csv"

    result = runner.invoke(app, ["fetch", str(destination)])

    assert result.exit_code == 0
    assert stub_client.downloads == [destination]
    assert destination.read_bytes() == b"1,2,3\n"
    assert "Saved 6 bytes" in result.stdout


def test_run_reports_malformed_dump(monkeypatch, runner: CliRunner, stub_client: StubClient, tmp_path) -> None:
    dump = tmp_path / "measurements.csv"
    dump.write_text("id,value\n1,35\n")
    pipeline = ExportPipeline(
        source=CsvMeasurementSource(dump),
        state_store=ExportStateStore(),
        bucket=ExportBucket(name="test"),
        rules=load_rules(),
    )
    monkeypatch.setattr("cli.app.build_default_pipeline", lambda: pipeline)

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 1
    assert not isinstance(result.exception, ValueError)
    assert "missing required columns" in result.output
