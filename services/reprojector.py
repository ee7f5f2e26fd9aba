"""Geographic to fixed-zoom Web Mercator pixel coordinates.

Spherical Web Mercator as used by Bing/Google tile pyramids. The zoom level
is part of the client contract: the mobile app renders from a 2^21 pixel wide
grid (zoom 13, 256 px tiles) and must not be changed independently.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple

from rules.loader import GridSettings, SourceCorrection

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SECONDS_PER_DAY = 86400


class Reprojector:
    def __init__(
        self,
        grid: GridSettings,
        corrections: Iterable[SourceCorrection] = (),
    ) -> None:
        self.grid = grid
        self.map_size = grid.map_size
        self._corrections: Dict[int, SourceCorrection] = {
            correction.user_id: correction for correction in corrections
        }

    def project(
        self, longitude: float, latitude: float, source_tag: Optional[int] = None
    ) -> Tuple[int, int]:
        map_size = self.map_size
        sin_lat = math.sin(math.radians(latitude))
        x = (longitude + 180.0) / 360.0 * map_size
        y = (0.5 - math.log((1.0 + sin_lat) / (1.0 - sin_lat)) / (4.0 * math.pi)) * map_size

        pixel_x = math.floor(x + 0.5)
        pixel_y = math.floor(y + 0.5)

        correction = self._corrections.get(source_tag) if source_tag is not None else None
        if correction is not None:
            pixel_x += correction.pixel_dx
            pixel_y += correction.pixel_dy

        return self._clamp(pixel_x), self._clamp(pixel_y)

    def day_offset(self, source_tag: Optional[int] = None) -> int:
        if source_tag is None:
            return 0
        correction = self._corrections.get(source_tag)
        return correction.day_offset if correction is not None else 0

    def captured_day(self, captured_at: datetime, source_tag: Optional[int] = None) -> int:
        """Days since the Unix epoch rounded to the nearest whole day, shifted by
        the source's recency penalty.
        """
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        elapsed = captured_at - _EPOCH
        return round(elapsed.total_seconds() / _SECONDS_PER_DAY) + self.day_offset(source_tag)

    def _clamp(self, value: int) -> int:
        return min(max(value, 0), self.map_size - 1)
