"""
Planar area of a claim ring.

The shoelace sum is taken directly over degree coordinates and scaled by a
fixed meters-per-degree factor squared. No latitude correction is applied, so
the figure is only meaningful for small claims; larger loops accumulate
projection error.
"""

from typing import Optional, Sequence

import numpy as np

from ..utils.geodesy import Coordinate, open_ring
from .errors import AreaOutOfBounds
from .rules import ClaimRules


class AreaCalculator:
    """Computes and bounds-checks claim areas."""

    def __init__(self, rules: Optional[ClaimRules] = None):
        self.rules = rules or ClaimRules()

    def signed_area_deg2(self, ring: Sequence[Coordinate]) -> float:
        """Signed shoelace area in square degrees (counter-clockwise positive)."""
        points = open_ring(ring)
        if len(points) < 3:
            return 0.0

        x = np.array([p.lon for p in points], dtype=float)
        y = np.array([p.lat for p in points], dtype=float)
        return float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)) / 2.0

    def area_m2(self, ring: Sequence[Coordinate]) -> float:
        """Absolute area in square meters."""
        return abs(self.signed_area_deg2(ring)) * self.rules.meters_per_degree ** 2

    def check_bounds(self, area_m2: float) -> float:
        """Return ``area_m2`` if claimable, raise AreaOutOfBounds otherwise."""
        if not self.rules.min_area_m2 <= area_m2 <= self.rules.max_area_m2:
            raise AreaOutOfBounds(area_m2, self.rules.min_area_m2, self.rules.max_area_m2)
        return area_m2
