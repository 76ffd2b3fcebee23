"""Loop-closure detection for recorded paths."""

from typing import List, Optional, Sequence

import structlog

from ..utils.geodesy import Coordinate, close_ring, haversine_m
from .errors import ClosureTooFar, IncompletePath
from .rules import ClaimRules

logger = structlog.get_logger()


class ClosureDetector:
    """Decides whether a path has come back to its start."""

    def __init__(self, rules: Optional[ClaimRules] = None):
        self.rules = rules or ClaimRules()

    def closure_gap_m(self, points: Sequence[Coordinate]) -> float:
        """Distance between the first and last point."""
        if len(points) < 2:
            return float("inf")
        return haversine_m(points[0], points[-1])

    def is_closeable(self, points: Sequence[Coordinate]) -> bool:
        if len(points) < self.rules.min_closure_points:
            return False
        return self.closure_gap_m(points) < self.rules.closure_distance_m

    def check(self, points: Sequence[Coordinate]) -> List[Coordinate]:
        """
        Validate closure and return the completed ring.

        The first point is repeated at the end to close the ring.

        Raises:
            IncompletePath: fewer than ``min_closure_points`` points
            ClosureTooFar: start/end gap not under ``closure_distance_m``
        """
        if len(points) < self.rules.min_closure_points:
            raise IncompletePath(len(points), self.rules.min_closure_points)

        gap = self.closure_gap_m(points)
        if gap >= self.rules.closure_distance_m:
            raise ClosureTooFar(gap, self.rules.closure_distance_m)

        logger.debug("Loop closed", points=len(points), gap_m=round(gap, 1))
        return close_ring(points)
