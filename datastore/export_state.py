from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from pydantic import ValidationError

from app.schemas import ExportState
from settings import get_settings

logger = logging.getLogger(__name__)


class ExportStateStore:
    """Single-row checkpoint of the last successful export.

    Without a persistence path the row only lives in memory, which is what the
    tests use to run the pipeline against fabricated state.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self.persistence_path = persistence_path
        self._state: Optional[ExportState] = None
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._state = self._load_from_disk()

    def load(self) -> Optional[ExportState]:
        with self._lock:
            if self.persistence_path:
                self._state = self._load_from_disk()
            if self._state is None:
                return None
            return self._state.model_copy(deep=True)

    def last_max_id(self) -> int:
        state = self.load()
        return state.last_max_id if state is not None else 0

    def commit(
        self, last_max_id: Optional[int], exported_at: Optional[datetime] = None
    ) -> Optional[ExportState]:
        """Overwrite the checkpoint; a null or zero id clears it instead."""
        if not last_max_id:
            logger.warning(
                "Refusing to store empty export checkpoint; clearing state",
                extra={"last_max_id": last_max_id},
            )
            self.reset()
            return None

        state = ExportState(
            last_max_id=last_max_id,
            export_date=exported_at or datetime.now(timezone.utc),
        )
        with self._lock:
            self._state = state
            self._persist(state.model_dump(mode="json"))
        return state.model_copy(deep=True)

    def reset(self) -> None:
        with self._lock:
            self._state = None
            if self.persistence_path and self.persistence_path.exists():
                self.persistence_path.unlink()

    def _persist(self, payload: dict[str, Any]) -> None:
        if not self.persistence_path:
            return
        tmp_path = self.persistence_path.with_name(self.persistence_path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        os.replace(tmp_path, self.persistence_path)

    def _load_from_disk(self) -> Optional[ExportState]:
        if not self.persistence_path or not self.persistence_path.exists():
            return None

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        if not isinstance(data, dict) or not data.get("last_max_id"):
            return self._discard(self.persistence_path, "missing or zero last_max_id")

        try:
            return ExportState.model_validate(data)
        except ValidationError as exc:
            return self._discard(self.persistence_path, str(exc.errors()[0].get("msg", "invalid")))

    @staticmethod
    def _discard(path: Path, reason: str) -> None:
        # load() holds self._lock here, so reset() would deadlock.
        logger.warning("Discarding unusable export checkpoint", extra={"reason": reason})
        path.unlink(missing_ok=True)
        return None


@lru_cache
def build_default_state_store(path: Optional[str] = None) -> ExportStateStore:
    settings = get_settings()
    state_path = settings.state_path if path is None else path
    persistence = Path(state_path) if state_path else None
    return ExportStateStore(persistence_path=persistence)
