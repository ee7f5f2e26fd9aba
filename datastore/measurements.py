"""Read-only access to the measurements table."""

from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Protocol, TypeVar

from models.records import Measurement
from settings import get_settings

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = (
    "id",
    "user_id",
    "device_id",
    "unit",
    "value",
    "latitude",
    "longitude",
    "captured_at",
)

T = TypeVar("T")


class MeasurementSource(Protocol):
    def max_id(self) -> int:
        """Highest measurement id currently stored, 0 when empty."""

    def iter_measurements(self) -> Iterator[Measurement]:
        """Stream every stored measurement, in any order."""


class InMemoryMeasurementSource:
    """Holds measurements in a list; used by tests and embedding callers."""

    def __init__(self, measurements: Iterable[Measurement] = ()) -> None:
        self._measurements = list(measurements)

    def add(self, measurement: Measurement) -> None:
        self._measurements.append(measurement)

    def max_id(self) -> int:
        return max((m.id for m in self._measurements), default=0)

    def iter_measurements(self) -> Iterator[Measurement]:
        return iter(list(self._measurements))


class CsvMeasurementSource:
    """Streams a CSV dump of the measurements table.

    Empty or unparseable cells become ``None`` and are left for the sanitizer
    to reject. Rows without a usable ``id`` cannot be tracked by the change
    gate and are skipped here.
    """

    def __init__(self, path: Path, encoding: str = "utf-8") -> None:
        self.path = path
        self.encoding = encoding

    def max_id(self) -> int:
        return max((m.id for m in self.iter_measurements()), default=0)

    def iter_measurements(self) -> Iterator[Measurement]:
        if not self.path.exists():
            logger.warning("Measurements file %s does not exist; treating as empty", self.path)
            return

        with self.path.open("r", encoding=self.encoding, newline="") as handle:
            reader = csv.DictReader(handle)
            if not reader.fieldnames:
                raise ValueError("Measurements CSV is missing a header row.")

            normalized = {name.lower().strip(): name for name in reader.fieldnames}
            missing = sorted(set(REQUIRED_COLUMNS) - normalized.keys())
            if missing:
                raise ValueError(
                    f"Measurements CSV missing required columns: {', '.join(missing)}"
                )
            columns = {column: normalized[column] for column in REQUIRED_COLUMNS}

            for row_number, row in enumerate(reader, start=2):
                cells = {
                    column: (row.get(source) or "").strip()
                    for column, source in columns.items()
                }
                measurement_id = _parse_optional(cells["id"], int)
                if measurement_id is None:
                    logger.warning(
                        "Skipping row without a usable id",
                        extra={"row_number": row_number, "reason": "invalid id"},
                    )
                    continue

                yield Measurement(
                    id=measurement_id,
                    user_id=_parse_optional(cells["user_id"], int),
                    device_id=_parse_optional(cells["device_id"], int),
                    unit=cells["unit"].lower() or None,
                    value=_parse_optional(cells["value"], float),
                    latitude=_parse_optional(cells["latitude"], float),
                    longitude=_parse_optional(cells["longitude"], float),
                    captured_at=_parse_optional(cells["captured_at"], parse_timestamp),
                )


def _parse_optional(raw: str, parser: Callable[[str], T]) -> Optional[T]:
    if not raw or raw.upper() == "NULL":
        return None
    try:
        return parser(raw)
    except ValueError:
        return None


def parse_timestamp(value: str) -> datetime:
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


@lru_cache
def build_default_source(path: Optional[str] = None) -> CsvMeasurementSource:
    settings = get_settings()
    csv_path = settings.measurements_path if path is None else path
    return CsvMeasurementSource(Path(csv_path))
