"""Per-pixel gridding with a recency window."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from models.records import GridCell, NormalizedPoint


@dataclass
class CellAccumulator:
    """Points collected for one pixel before the window is applied."""

    max_day: int
    points: List[NormalizedPoint] = field(default_factory=list)

    def add(self, point: NormalizedPoint) -> None:
        self.points.append(point)
        if point.captured_day > self.max_day:
            self.max_day = point.captured_day


class Binner:
    """Groups points by pixel and averages each cell over its own recent history.

    The window is anchored to the newest reading in the cell, not to the run
    date, so a cell only measured years ago still reports its latest survey.
    """

    def __init__(self, window_days: int = 270) -> None:
        self.window_days = window_days

    def bin(self, points: Iterable[NormalizedPoint]) -> List[GridCell]:
        groups = self._group(points)
        return [self._reduce(pixel, group) for pixel, group in groups.items()]

    def _group(self, points: Iterable[NormalizedPoint]) -> Dict[Tuple[int, int], CellAccumulator]:
        groups: Dict[Tuple[int, int], CellAccumulator] = {}
        for point in points:
            pixel = (point.pixel_x, point.pixel_y)
            group = groups.get(pixel)
            if group is None:
                group = groups[pixel] = CellAccumulator(max_day=point.captured_day)
            group.add(point)
        return groups

    def _reduce(self, pixel: Tuple[int, int], group: CellAccumulator) -> GridCell:
        cutoff_day = group.max_day - self.window_days
        total = 0.0
        count = 0
        for point in group.points:
            if point.captured_day > cutoff_day:
                total += point.dose_rate
                count += 1
        # The newest point always survives its own cutoff, so count >= 1.
        return GridCell(
            x=pixel[0],
            y=pixel[1],
            cutoff_day=cutoff_day,
            aggregated_dose=total / count,
        )
