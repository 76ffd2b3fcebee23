"""
Tunable thresholds of the claim engine.

Defaults are the production values; ``from_settings`` maps the environment
driven ``Settings`` onto them.
"""

from dataclasses import dataclass
from enum import Enum

from ..utils.geodesy import METERS_PER_DEGREE


class ContinuityPolicy(str, Enum):
    """What a path does when the gap to its last fix is too long."""

    RESTART = "restart"  # start over at the stale fix
    ABANDON = "abandon"  # discard the attempt


@dataclass
class ClaimRules:
    """Anti-cheat, closure and area limits."""

    # Per-sample validation
    max_speed_kmh: float = 15.0  # walking, running, cycling
    teleport_distance_m: float = 100.0
    teleport_window_s: float = 5.0
    stale_gap_s: float = 60.0
    continuity_policy: ContinuityPolicy = ContinuityPolicy.RESTART
    min_point_spacing_m: float = 5.0

    # Closure
    closure_distance_m: float = 30.0
    min_closure_points: int = 3

    # Area
    min_area_m2: float = 500.0
    max_area_m2: float = 100000.0
    max_extent_m: float = 5000.0  # longest side of the claim bounding box
    meters_per_degree: float = METERS_PER_DEGREE

    # Session housekeeping
    path_inactivity_timeout_s: float = 600.0

    @property
    def max_speed_ms(self) -> float:
        return self.max_speed_kmh / 3.6

    @classmethod
    def from_settings(cls, settings) -> "ClaimRules":
        return cls(
            max_speed_kmh=settings.max_speed_kmh,
            teleport_distance_m=settings.teleport_distance_m,
            teleport_window_s=settings.teleport_window_s,
            stale_gap_s=settings.stale_gap_s,
            continuity_policy=ContinuityPolicy(settings.continuity_policy.lower()),
            min_point_spacing_m=settings.min_point_spacing_m,
            closure_distance_m=settings.closure_distance_m,
            min_closure_points=settings.min_closure_points,
            min_area_m2=settings.min_area_m2,
            max_area_m2=settings.max_area_m2,
            max_extent_m=settings.max_extent_m,
            meters_per_degree=settings.meters_per_degree,
            path_inactivity_timeout_s=settings.path_inactivity_timeout_s,
        )
