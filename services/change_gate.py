"""Skip-check comparing the newest measurement id with the last export."""

from __future__ import annotations

from typing import Optional

from datastore.export_state import ExportStateStore
from datastore.measurements import MeasurementSource


class ChangeGate:
    """Decides whether a full recomputation is warranted.

    Only new ids open the gate. When it opens, the whole table is reprocessed
    because each cell's recency window depends on its full history.
    """

    def __init__(self, source: MeasurementSource, state_store: ExportStateStore) -> None:
        self.source = source
        self.state_store = state_store

    def current_max_id(self) -> int:
        return self.source.max_id() or 0

    def last_exported_id(self) -> int:
        return self.state_store.last_max_id()

    def should_run(
        self,
        current_max_id: Optional[int] = None,
        last_exported_id: Optional[int] = None,
    ) -> bool:
        """True when the source holds ids beyond the last export.

        Callers that already read either id pass it in so the source is
        scanned only once per run.
        """
        if current_max_id is None:
            current_max_id = self.current_max_id()
        if last_exported_id is None:
            last_exported_id = self.last_exported_id()
        return current_max_id > last_exported_id
