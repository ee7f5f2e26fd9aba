"""End-to-end export run: gate, filter, project, normalize, bin, order, publish."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Iterable, Iterator
from uuid import uuid4

from app.schemas import ExportResult, ExportStatus
from datastore.export_state import ExportStateStore, build_default_state_store
from datastore.measurements import MeasurementSource, build_default_source
from models.records import Measurement, NormalizedPoint
from rules.loader import ExportRules, build_default_rules
from services.binner import Binner
from services.change_gate import ChangeGate
from services.cluster import SpatialClusterOrderer
from services.dose import DoseNormalizer
from services.exporter import ExportFormat, Exporter
from services.reprojector import Reprojector
from services.sanitizer import Sanitizer
from settings import get_settings
from storage.export_bucket import ExportBucket, build_default_bucket

logger = logging.getLogger(__name__)


class ExportInProgressError(RuntimeError):
    """Raised when a run is requested while another one holds the run lock."""


class ExportRunError(RuntimeError):
    """A run aborted; the export checkpoint was left untouched."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExportPipeline:
    """Coordinates one full recomputation of the export.

    Runs are all-or-nothing: the output object is published and the
    checkpoint advanced only at the very end, and a failure anywhere before
    that leaves both exactly as they were.
    """

    def __init__(
        self,
        source: MeasurementSource,
        state_store: ExportStateStore,
        bucket: ExportBucket,
        rules: ExportRules,
        object_key: str = "measurements_z13.csv",
        export_format: ExportFormat = ExportFormat.csv,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.source = source
        self.state_store = state_store
        self.bucket = bucket
        self.rules = rules
        self.object_key = object_key
        self.export_format = export_format
        self.clock = clock

        self.gate = ChangeGate(source, state_store)
        self.reprojector = Reprojector(rules.grid, rules.source_corrections)
        self.normalizer = DoseNormalizer(rules.sensitivity)
        self.binner = Binner(window_days=rules.grid.window_days)
        self.orderer = SpatialClusterOrderer(rules.grid)
        self.exporter = Exporter(bucket, state_store, export_format)
        self._run_lock = Lock()

    def run(self) -> ExportResult:
        if not self._run_lock.acquire(blocking=False):
            raise ExportInProgressError("An export run is already in progress.")
        try:
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> ExportResult:
        run_id = uuid4().hex[:12]
        start_time = time.perf_counter()
        result = ExportResult(run_id=run_id, status=ExportStatus.skipped, started_at=self.clock())

        try:
            self._process(result)
        except Exception as exc:
            logger.exception(
                "Export run failed; checkpoint left unchanged",
                extra={"run_id": run_id, "status": "failed"},
            )
            raise ExportRunError(f"Export run {run_id} failed: {exc}") from exc

        return self._finish(result, start_time)

    def _process(self, result: ExportResult) -> None:
        run_id = result.run_id
        result.previous_max_id = self.gate.last_exported_id()
        result.current_max_id = self.gate.current_max_id()

        if not self.gate.should_run(result.current_max_id, result.previous_max_id):
            logger.info(
                "No new measurements since last export",
                extra={"run_id": run_id, "last_max_id": result.previous_max_id, "status": "skipped"},
            )
            return

        logger.info(
            "Starting export run",
            extra={"run_id": run_id, "last_max_id": result.current_max_id},
        )
        sanitizer = Sanitizer(self.rules, clock=self.clock)
        counter = _RowCounter()
        rows = counter.count(self._snapshot(self.source.iter_measurements(), result.current_max_id))
        points = list(self._normalize(sanitizer.filter(rows)))
        cells = self.orderer.order(self.binner.bin(points))

        result.row_count = counter.total
        result.accepted_count = len(points)
        result.dropped_count = sum(sanitizer.rejections.values())
        if sanitizer.rejections:
            logger.info(
                "Dropped measurements by reason: %s",
                dict(sorted(sanitizer.rejections.items())),
                extra={"run_id": run_id, "dropped_count": result.dropped_count},
            )

        if not cells:
            result.status = ExportStatus.empty
            logger.warning(
                "No measurements survived filtering; keeping previous export",
                extra={"run_id": run_id, "row_count": result.row_count, "status": "empty"},
            )
            return

        written, state = self.exporter.export(
            cells, self.object_key, result.current_max_id, exported_at=self.clock()
        )
        result.status = ExportStatus.exported
        result.cell_count = written
        result.object_key = self.object_key
        result.export_format = self.export_format.value
        result.state = state

    def _finish(self, result: ExportResult, start_time: float) -> ExportResult:
        result.finished_at = self.clock()
        result.processing_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "Export run finished",
            extra={
                "run_id": result.run_id,
                "status": result.status.value,
                "row_count": result.row_count,
                "cell_count": result.cell_count,
                "dropped_count": result.dropped_count,
                "processing_ms": result.processing_ms,
            },
        )
        return result

    @staticmethod
    def _snapshot(measurements: Iterable[Measurement], max_id: int) -> Iterator[Measurement]:
        # Rows inserted after the gate read max_id belong to the next run.
        for measurement in measurements:
            if measurement.id <= max_id:
                yield measurement

    def _normalize(self, measurements: Iterable[Measurement]) -> Iterator[NormalizedPoint]:
        reprojector = self.reprojector
        normalizer = self.normalizer
        for measurement in measurements:
            value = measurement.value
            latitude, longitude = measurement.latitude, measurement.longitude
            captured_at = measurement.captured_at
            if value is None or latitude is None or longitude is None or captured_at is None:
                raise ValueError(
                    f"Measurement {measurement.id} passed filtering with missing fields"
                )

            pixel_x, pixel_y = reprojector.project(longitude, latitude, measurement.user_id)
            yield NormalizedPoint(
                pixel_x=pixel_x,
                pixel_y=pixel_y,
                captured_day=reprojector.captured_day(captured_at, measurement.user_id),
                dose_rate=normalizer.normalize(measurement.unit, measurement.device_id, value),
            )


class _RowCounter:
    def __init__(self) -> None:
        self.total = 0

    def count(self, rows: Iterable[Measurement]) -> Iterator[Measurement]:
        for row in rows:
            self.total += 1
            yield row


@lru_cache
def build_default_pipeline() -> ExportPipeline:
    """Factory that wires the pipeline from environment settings."""
    settings = get_settings()
    return ExportPipeline(
        source=build_default_source(),
        state_store=build_default_state_store(),
        bucket=build_default_bucket(),
        rules=build_default_rules(),
        object_key=settings.object_key,
        export_format=ExportFormat(settings.export_format),
    )
