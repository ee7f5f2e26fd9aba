"""Pydantic schemas for persisted state and run reports."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ExportStatus(str, Enum):
    """Outcome of a single export run."""

    skipped = "skipped"
    empty = "empty"
    exported = "exported"


class ExportState(BaseModel):
    """Checkpoint of the last successful export."""

    last_max_id: int = Field(..., gt=0, description="Highest measurement id covered by the export.")
    export_date: datetime


class ExportResult(BaseModel):
    """Report for one pipeline run."""

    run_id: str
    status: ExportStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    processing_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    previous_max_id: int = Field(0, ge=0)
    current_max_id: int = Field(0, ge=0)
    row_count: int = Field(0, ge=0, description="Measurements read from the source.")
    accepted_count: int = Field(0, ge=0)
    dropped_count: int = Field(0, ge=0)
    cell_count: int = Field(0, ge=0)
    object_key: Optional[str] = None
    export_format: Optional[str] = None
    state: Optional[ExportState] = None


class ExportStateResponse(BaseModel):
    """HTTP view of the checkpoint and the currently published export."""

    state: Optional[ExportState] = None
    object_key: str
    available: bool
