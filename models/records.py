"""Domain records passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


CPM = "cpm"
MICROSIEVERT = "microsievert"

# Legacy spellings accepted for dose-rate submissions.
DOSE_RATE_UNITS = frozenset({MICROSIEVERT, "usv"})


@dataclass(slots=True, frozen=True)
class Measurement:
    """A raw device submission as stored in the measurements table."""

    id: int
    user_id: Optional[int]
    device_id: Optional[int]
    unit: Optional[str]
    value: Optional[float]
    latitude: Optional[float]
    longitude: Optional[float]
    captured_at: Optional[datetime]


@dataclass(slots=True, frozen=True)
class NormalizedPoint:
    """A filtered measurement in pixel space with a dose rate in uSv/h."""

    pixel_x: int
    pixel_y: int
    captured_day: int
    dose_rate: float


@dataclass(slots=True, frozen=True)
class GridCell:
    """Aggregated dose for one occupied pixel."""

    x: int
    y: int
    cutoff_day: int
    aggregated_dose: float
