"""Serialization of ordered grid cells and checkpoint advancement."""

from __future__ import annotations

import logging
import struct
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Iterable, Optional, Tuple

from app.schemas import ExportState
from datastore.export_state import ExportStateStore
from models.records import GridCell
from storage.export_bucket import ExportBucket

logger = logging.getLogger(__name__)

DOSE_SCALE = 1000
_BINARY_RECORD = struct.Struct("<iii")


class ExportFormat(str, Enum):
    """Wire encodings for the ``(x, y, z)`` records."""

    csv = "csv"
    binary = "binary"


def encode_cell(cell: GridCell) -> Tuple[int, int, int]:
    """Fixed-point record: dose in nSv/h so the transport carries no floats."""
    return cell.x, cell.y, int(round(cell.aggregated_dose * DOSE_SCALE))


def write_records(
    cells: Iterable[GridCell], handle: BinaryIO, export_format: ExportFormat = ExportFormat.csv
) -> int:
    count = 0
    for cell in cells:
        x, y, z = encode_cell(cell)
        if export_format is ExportFormat.binary:
            handle.write(_BINARY_RECORD.pack(x, y, z))
        else:
            handle.write(f"{x},{y},{z}\n".encode("ascii"))
        count += 1
    return count


def read_records(data: bytes, export_format: ExportFormat = ExportFormat.csv) -> list[Tuple[int, int, int]]:
    """Decode an export object back into ``(x, y, z)`` tuples."""
    if export_format is ExportFormat.binary:
        if len(data) % _BINARY_RECORD.size:
            raise ValueError("Binary export length is not a whole number of records.")
        return list(_BINARY_RECORD.iter_unpack(data))

    records: list[Tuple[int, int, int]] = []
    for line in data.decode("ascii").splitlines():
        if not line:
            continue
        x, y, z = (int(part) for part in line.split(","))
        records.append((x, y, z))
    return records


class Exporter:
    """Publishes cluster-ordered cells, then records the new checkpoint.

    The checkpoint is only committed after the object has been published; if
    writing fails the previous checkpoint stays in place and the next run
    starts over from it.
    """

    def __init__(
        self,
        bucket: ExportBucket,
        state_store: ExportStateStore,
        export_format: ExportFormat = ExportFormat.csv,
    ) -> None:
        self.bucket = bucket
        self.state_store = state_store
        self.export_format = export_format

    def export(
        self,
        cells: Iterable[GridCell],
        key: str,
        last_max_id: int,
        exported_at: Optional[datetime] = None,
    ) -> Tuple[int, Optional[ExportState]]:
        with self.bucket.open_writer(key) as handle:
            written = write_records(cells, handle, self.export_format)

        logger.info(
            "Published export object",
            extra={"object_key": key, "cell_count": written},
        )
        state = self.state_store.commit(last_max_id, exported_at)
        logger.info("Advanced export checkpoint", extra={"last_max_id": last_max_id})
        return written, state
