"""
Nearby-player density and the content spawn tier derived from it.

Player positions come from heartbeats; a heartbeat counts as online while its
``last_seen`` is inside the online window. Online status is never stored.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
import structlog

from ..utils.geodesy import BoundingBox, Coordinate, haversine_many_m
from ..utils.timeutil import Clock, utcnow

logger = structlog.get_logger()


class DensityTier(str, Enum):
    ALONE = "alone"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# (minimum nearby count, tier, suggested spawn count), ascending
SPAWN_TIERS: Tuple[Tuple[int, DensityTier, int], ...] = (
    (0, DensityTier.ALONE, 1),
    (1, DensityTier.LOW, 3),
    (6, DensityTier.MEDIUM, 6),
    (21, DensityTier.HIGH, 99),  # effectively everything
)


@dataclass(frozen=True)
class SpawnSuggestion:
    nearby_count: int
    tier: DensityTier
    suggested_spawn_count: int


def suggest_spawn_tier(count: int) -> SpawnSuggestion:
    """Map a nearby-player count to its density tier and spawn count."""
    if count < 0:
        raise ValueError("count must be non-negative")

    chosen = SPAWN_TIERS[0]
    for tier in SPAWN_TIERS:
        if count >= tier[0]:
            chosen = tier
    return SpawnSuggestion(count, chosen[1], chosen[2])


@dataclass
class DensityOptions:
    online_window_s: float = 300.0
    default_radius_m: float = 1000.0

    @classmethod
    def from_settings(cls, settings) -> "DensityOptions":
        return cls(
            online_window_s=settings.online_window_s,
            default_radius_m=settings.density_radius_m,
        )


class PositionSource(Protocol):
    def online_positions(
        self, bbox: BoundingBox, seen_after: datetime, exclude_user: Optional[str]
    ) -> Sequence[Tuple[float, float]]:
        """(lat, lon) of heartbeats inside ``bbox`` seen after ``seen_after``."""


class DensityEstimator:
    """Counts online players around a point."""

    def __init__(
        self,
        positions: PositionSource,
        options: Optional[DensityOptions] = None,
        clock: Clock = utcnow,
    ):
        self.positions = positions
        self.options = options or DensityOptions()
        self.clock = clock

    def online_cutoff(self, now: Optional[datetime] = None) -> datetime:
        now = now or self.clock()
        return now - timedelta(seconds=self.options.online_window_s)

    def nearby_count(
        self,
        point: Coordinate,
        radius_m: Optional[float] = None,
        excluding_user: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Count online players within ``radius_m`` of ``point``.

        Args:
            point: Query center
            radius_m: Search radius, defaults to ``default_radius_m``
            excluding_user: Requester, never counted
            now: Evaluation time, defaults to the clock
        """
        radius = radius_m if radius_m is not None else self.options.default_radius_m
        if radius <= 0:
            raise ValueError("radius must be positive")

        cutoff = self.online_cutoff(now)
        rows: List[Tuple[float, float]] = []
        for bbox in BoundingBox.around(point, radius).wrapped():
            rows.extend(self.positions.online_positions(bbox, cutoff, excluding_user))
        if not rows:
            return 0

        coords = np.asarray(rows, dtype=float)
        distances = haversine_many_m(point, coords[:, 0], coords[:, 1])
        count = int(np.count_nonzero(distances <= radius))
        logger.debug("Nearby players counted", candidates=len(rows), count=count)
        return count

    def suggest(
        self,
        point: Coordinate,
        radius_m: Optional[float] = None,
        excluding_user: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SpawnSuggestion:
        return suggest_spawn_tier(self.nearby_count(point, radius_m, excluding_user, now))
