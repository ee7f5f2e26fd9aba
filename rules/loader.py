"""Export rules: blacklists, geofences, sensitivities and grid constants.

The rules are business data maintained alongside the deployment rather than
inside the pipeline code. They are loaded from a JSON document and validated
with pydantic; ``default_rules.json`` carries the production values.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from settings import get_settings

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "default_rules.json"


class IdRange(BaseModel):
    """Inclusive range of measurement ids known to be bad."""

    start: int
    end: int
    note: Optional[str] = None

    @model_validator(mode="after")
    def _check_order(self) -> "IdRange":
        if self.start > self.end:
            raise ValueError(f"id range start {self.start} is after end {self.end}")
        return self

    def contains(self, measurement_id: int) -> bool:
        return self.start <= measurement_id <= self.end


class BoundingBox(BaseModel):
    min_latitude: float = Field(..., ge=-90.0, le=90.0)
    max_latitude: float = Field(..., ge=-90.0, le=90.0)
    min_longitude: float = Field(..., ge=-180.0, le=180.0)
    max_longitude: float = Field(..., ge=-180.0, le=180.0)

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.min_latitude <= latitude <= self.max_latitude
            and self.min_longitude <= longitude <= self.max_longitude
        )


class GeofenceException(BaseModel):
    """Partial ban: drop a user's readings at or above a threshold inside a box."""

    name: str
    user_ids: List[int] = Field(..., min_length=1)
    threshold: float = Field(..., description="Raw values below this are always kept.")
    box: BoundingBox
    note: Optional[str] = None

    def allows(self, user_id: Optional[int], value: float, latitude: float, longitude: float) -> bool:
        if user_id not in self.user_ids:
            return True
        if value < self.threshold:
            return True
        return not self.box.contains(latitude, longitude)


class SourceCorrection(BaseModel):
    """Pixel and recency adjustment for a submission channel with coarse positions."""

    name: str
    user_id: int
    pixel_dx: int = 0
    pixel_dy: int = 0
    day_offset: int = 0


class SensitivityGroup(BaseModel):
    cpm_per_usvh: float = Field(..., gt=0)
    device_ids: List[int] = Field(..., min_length=1)


class SensitivityTable(BaseModel):
    """Counts per minute that correspond to 1 uSv/h, keyed by device id."""

    default_cpm_per_usvh: float = Field(..., gt=0, description="Used when device_id is unset.")
    groups: List[SensitivityGroup] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_devices(self) -> "SensitivityTable":
        seen: set[int] = set()
        for group in self.groups:
            duplicates = seen.intersection(group.device_ids)
            if duplicates:
                raise ValueError(f"device ids listed twice: {sorted(duplicates)}")
            seen.update(group.device_ids)
        return self

    def as_mapping(self) -> Dict[int, float]:
        return {
            device_id: group.cpm_per_usvh
            for group in self.groups
            for device_id in group.device_ids
        }


class ValueRange(BaseModel):
    minimum: float
    maximum: float

    def contains(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


class SanityBounds(BaseModel):
    earliest_capture: datetime = datetime(2011, 3, 1)
    future_tolerance_hours: float = Field(48.0, ge=0)
    cpm_unset_device: ValueRange = ValueRange(minimum=10.0, maximum=350000.0)
    cpm_known_device: ValueRange = ValueRange(minimum=10.0, maximum=30000.0)
    max_known_device_id: int = 24
    dose_rate: ValueRange = ValueRange(minimum=0.02, maximum=5.0)
    latitude_limit: float = Field(85.05, gt=0, le=90.0)
    longitude_limit: float = Field(180.0, gt=0, le=180.0)

    @property
    def future_tolerance(self) -> timedelta:
        return timedelta(hours=self.future_tolerance_hours)


class GridSettings(BaseModel):
    """Fixed Web Mercator zoom the client renders from. Changing it breaks clients."""

    zoom: int = Field(13, ge=1, le=23)
    tile_size: int = Field(256, gt=0)
    window_days: int = Field(270, gt=0)

    @model_validator(mode="after")
    def _check_tile_size(self) -> "GridSettings":
        if self.tile_size & (self.tile_size - 1):
            raise ValueError("tile_size must be a power of two")
        return self

    @property
    def tile_shift(self) -> int:
        return self.tile_size.bit_length() - 1

    @property
    def map_size(self) -> int:
        return self.tile_size << self.zoom


class ExportRules(BaseModel):
    excluded_id_ranges: List[IdRange] = Field(default_factory=list)
    excluded_ids: List[int] = Field(default_factory=list)
    banned_user_ids: List[int] = Field(default_factory=list)
    geofence_exceptions: List[GeofenceException] = Field(default_factory=list)
    source_corrections: List[SourceCorrection] = Field(default_factory=list)
    sensitivity: SensitivityTable
    sanity: SanityBounds = SanityBounds()
    grid: GridSettings = GridSettings()
    reject_unmapped_devices: bool = False

    @model_validator(mode="after")
    def _check_unique_names(self) -> "ExportRules":
        names = [exception.name for exception in self.geofence_exceptions]
        if len(names) != len(set(names)):
            raise ValueError("geofence exception names must be unique")
        users = [correction.user_id for correction in self.source_corrections]
        if len(users) != len(set(users)):
            raise ValueError("only one source correction per user_id is allowed")
        return self


def load_rules(path: Optional[Path] = None) -> ExportRules:
    """Read and validate a rules document; defaults to the bundled rules."""
    rules_path = path or DEFAULT_RULES_PATH
    try:
        raw = rules_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Unable to read export rules from {rules_path}: {exc}") from exc
    return ExportRules.model_validate_json(raw)


@lru_cache
def build_default_rules(path: Optional[str] = None) -> ExportRules:
    settings = get_settings()
    rules_path = settings.rules_path if path is None else path
    return load_rules(Path(rules_path) if rules_path else None)
