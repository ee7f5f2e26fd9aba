from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Iterator

import pytest

from datastore.export_state import ExportStateStore
from models.records import GridCell
from services.exporter import ExportFormat, Exporter, encode_cell, read_records, write_records
from storage.export_bucket import ExportBucket


def _cell(x: int, y: int, dose: float) -> GridCell:
    return GridCell(x=x, y=y, cutoff_day=0, aggregated_dose=dose)


def test_encode_cell_scales_dose_to_integer() -> None:
    assert encode_cell(_cell(1, 2, 1.0)) == (1, 2, 1000)
    assert encode_cell(_cell(1, 2, 0.1234)) == (1, 2, 123)
    assert encode_cell(_cell(1, 2, 0.0567)) == (1, 2, 57)
    assert encode_cell(_cell(1, 2, 0.0)) == (1, 2, 0)


def test_write_records_csv_has_no_header() -> None:
    buffer = io.BytesIO()

    count = write_records([_cell(5, 6, 0.05), _cell(7, 8, 1.2)], buffer)

    assert count == 2
    assert buffer.getvalue() == b"5,6,50\n7,8,1200\n"


def test_write_records_binary_uses_fixed_width_records() -> None:
    buffer = io.BytesIO()

    write_records([_cell(5, 6, 0.05), _cell(2097151, 0, 5.0)], buffer, ExportFormat.binary)

    data = buffer.getvalue()
    assert len(data) == 24
    assert data[:12] == (5).to_bytes(4, "little") + (6).to_bytes(4, "little") + (50).to_bytes(4, "little")
    assert read_records(data, ExportFormat.binary) == [(5, 6, 50), (2097151, 0, 5000)]


def test_read_records_rejects_truncated_binary() -> None:
    with pytest.raises(ValueError):
        read_records(b"\x00" * 13, ExportFormat.binary)


def test_export_publishes_then_commits_checkpoint(tmp_path) -> None:
    bucket = ExportBucket(name="test", root_path=tmp_path / "exports")
    store = ExportStateStore(persistence_path=tmp_path / "state.json")
    exporter = Exporter(bucket, store)
    exported_at = datetime(2024, 6, 1, tzinfo=timezone.utc)

    written, state = exporter.export([_cell(1, 1, 0.2)], "grid.csv", 42, exported_at=exported_at)

    assert written == 1
    assert bucket.get_object("grid.csv") == b"1,1,200\n"
    assert state is not None
    assert state.last_max_id == 42
    assert store.load() == state


def test_failed_write_keeps_previous_export_and_checkpoint(tmp_path) -> None:
    bucket = ExportBucket(name="test", root_path=tmp_path / "exports")
    store = ExportStateStore(persistence_path=tmp_path / "state.json")
    exporter = Exporter(bucket, store)
    exporter.export([_cell(1, 1, 0.2)], "grid.csv", 42)
    before = store.load()

    def exploding_cells() -> Iterator[GridCell]:
        yield _cell(2, 2, 0.3)
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError, match="disk full"):
        exporter.export(exploding_cells(), "grid.csv", 99)

    assert bucket.get_object("grid.csv") == b"1,1,200\n"
    assert store.load() == before
    assert bucket.list_objects() == ["grid.csv"]
