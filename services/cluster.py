"""Quadtree-style clustering order for the export file.

Sorting by the tile index at every zoom level from 1 up to the export zoom
keeps all cells of any tile, at any level, in one contiguous run. The client
builds its tile pyramid top-down with sequential reads only, which is what
makes on-device rasterization of millions of points feasible.

For pixel ``(x, y)`` and level ``L`` of ``Z``::

    shift = log2(tile_size) + (Z - L)
    idx_L = ((y >> shift) << L) + (x >> shift)

i.e. the row-major index of the ancestor tile in a ``2^L x 2^L`` grid.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

from models.records import GridCell
from rules.loader import GridSettings


class SpatialClusterOrderer:
    def __init__(self, grid: GridSettings) -> None:
        self.zoom = grid.zoom
        self.tile_shift = grid.tile_shift

    def tile_index(self, x: int, y: int, level: int) -> int:
        shift = self.tile_shift + (self.zoom - level)
        return ((y >> shift) << level) + (x >> shift)

    def sort_key(self, x: int, y: int) -> Tuple[int, ...]:
        return tuple(self.tile_index(x, y, level) for level in range(1, self.zoom + 1))

    def order(self, cells: Iterable[GridCell]) -> List[GridCell]:
        # Cells sharing a finest-level tile tie on the key; (y, x) keeps runs deterministic.
        return sorted(cells, key=lambda cell: (self.sort_key(cell.x, cell.y), cell.y, cell.x))
