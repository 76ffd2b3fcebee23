"""
Region-scoped mutual exclusion for territory commits.

The map is cut into square grid cells. A commit locks every cell its
candidate bounding box touches. Two polygons that intersect have intersecting
boxes and therefore share at least one cell, so their commits serialize while
commits in unrelated regions mostly proceed in parallel.

Cells hash onto a fixed table of lock stripes, so memory does not grow with
the area ever claimed. Stripes are always acquired in ascending order, which
rules out deadlock between commits.
"""

import math
import threading
import time
from contextlib import contextmanager
from typing import List, Tuple

import structlog

from ..core.errors import StorageFailure
from ..utils.geodesy import BoundingBox

logger = structlog.get_logger()

Cell = Tuple[int, int]


class RegionLocks:
    """In-process striped cell locks with a bounded wait."""

    def __init__(self, cell_deg: float = 0.01, timeout_s: float = 5.0, stripes: int = 1024):
        if cell_deg <= 0:
            raise ValueError("cell size must be positive")
        if stripes < 1:
            raise ValueError("at least one lock stripe is required")
        self.cell_deg = cell_deg
        self.timeout_s = timeout_s
        self._stripes = [threading.Lock() for _ in range(stripes)]

    @property
    def stripe_count(self) -> int:
        return len(self._stripes)

    def cells_for(self, bbox: BoundingBox) -> List[Cell]:
        lat_lo = math.floor(bbox.min_lat / self.cell_deg)
        lat_hi = math.floor(bbox.max_lat / self.cell_deg)
        lon_lo = math.floor(bbox.min_lon / self.cell_deg)
        lon_hi = math.floor(bbox.max_lon / self.cell_deg)
        return [
            (i, j)
            for i in range(lat_lo, lat_hi + 1)
            for j in range(lon_lo, lon_hi + 1)
        ]

    def stripe_of(self, cell: Cell) -> int:
        return ((cell[0] * 73856093) ^ (cell[1] * 19349663)) % len(self._stripes)

    def stripes_for(self, cells: List[Cell]) -> List[int]:
        """Distinct stripe indexes guarding ``cells``, ascending."""
        if len(cells) >= len(self._stripes):
            return list(range(len(self._stripes)))
        return sorted({self.stripe_of(cell) for cell in cells})

    @contextmanager
    def hold(self, bbox: BoundingBox):
        """
        Hold every cell of ``bbox`` for the duration of the block.

        Yields the cells so callers can take matching database locks.

        Raises:
            StorageFailure: the cells could not all be acquired in time
        """
        cells = self.cells_for(bbox)
        deadline = time.monotonic() + self.timeout_s
        acquired: List[threading.Lock] = []
        try:
            for index in self.stripes_for(cells):
                lock = self._stripes[index]
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    logger.warning("Region lock timeout", cells=len(cells))
                    raise StorageFailure("claim region is busy, try again")
                acquired.append(lock)
            yield cells
        finally:
            for lock in reversed(acquired):
                lock.release()


def advisory_key(cell: Cell) -> int:
    """Signed 64-bit key for ``pg_advisory_xact_lock``."""
    key = ((cell[0] & 0xFFFFFFFF) << 32) | (cell[1] & 0xFFFFFFFF)
    if key >= 2 ** 63:
        key -= 2 ** 64
    return key
