"""
Streaming anti-cheat checks for a single location fix.

Each incoming fix is compared with the last accepted point of the path:

- Out-of-order or duplicate timestamps break continuity
- Gaps longer than ``stale_gap_s`` lose continuity altogether
- Jumps over ``teleport_distance_m`` inside ``teleport_window_s`` are GPS snaps
- Average speed above ``max_speed_kmh`` cannot be a walk, run or ride

The model is heuristic; it raises the cost of spoofing, it does not prove
location.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

import structlog

from ..utils.geodesy import Coordinate, haversine_m
from .rules import ClaimRules

logger = structlog.get_logger()


@dataclass(frozen=True)
class LocationSample:
    """One fix from the device."""

    coordinate: Coordinate
    timestamp: datetime
    accuracy: Optional[float] = None  # horizontal accuracy in meters


class RejectionReason(str, Enum):
    EXCESSIVE_SPEED = "excessive_speed"
    DISCONTINUITY = "discontinuity"
    STALE_GAP = "stale_gap"


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: Optional[RejectionReason] = None
    distance_m: float = 0.0
    elapsed_s: float = 0.0

    @property
    def speed_kmh(self) -> Optional[float]:
        if self.elapsed_s <= 0:
            return None
        return self.distance_m / self.elapsed_s * 3.6

    @classmethod
    def accept(cls, distance_m: float = 0.0, elapsed_s: float = 0.0) -> "ValidationResult":
        return cls(True, None, distance_m, elapsed_s)

    @classmethod
    def reject(
        cls, reason: RejectionReason, distance_m: float, elapsed_s: float
    ) -> "ValidationResult":
        return cls(False, reason, distance_m, elapsed_s)


class LocationSampleValidator:
    """Accepts or rejects a fix relative to the previous accepted point."""

    def __init__(self, rules: Optional[ClaimRules] = None):
        self.rules = rules or ClaimRules()

    def validate(
        self,
        previous: Optional[LocationSample],
        sample: LocationSample,
        last_fix_at: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Check ``sample`` against ``previous``.

        Speed and jump tests are timed from ``previous``. Ordering and
        staleness are timed from ``last_fix_at`` when given, so fixes skipped
        as jitter still keep the path alive.

        Args:
            previous: Last accepted point of the path, or None for the first fix
            sample: Incoming fix
            last_fix_at: Time of the most recent accepted or skipped fix

        Returns:
            ValidationResult carrying the measured distance and elapsed time
        """
        if previous is None:
            return ValidationResult.accept()

        rules = self.rules
        distance = haversine_m(previous.coordinate, sample.coordinate)
        elapsed = (sample.timestamp - previous.timestamp).total_seconds()
        since_fix = (sample.timestamp - (last_fix_at or previous.timestamp)).total_seconds()

        if elapsed <= 0 or since_fix <= 0:
            logger.warning(
                "Out-of-order fix", distance_m=round(distance, 1), elapsed_s=since_fix
            )
            return ValidationResult.reject(RejectionReason.DISCONTINUITY, distance, elapsed)

        if since_fix > rules.stale_gap_s:
            logger.info("Path continuity lost", elapsed_s=since_fix, limit_s=rules.stale_gap_s)
            return ValidationResult.reject(RejectionReason.STALE_GAP, distance, elapsed)

        if distance > rules.teleport_distance_m and elapsed < rules.teleport_window_s:
            logger.warning(
                "GPS jump detected", distance_m=round(distance, 1), elapsed_s=elapsed
            )
            return ValidationResult.reject(RejectionReason.DISCONTINUITY, distance, elapsed)

        if distance / elapsed > rules.max_speed_ms:
            logger.warning(
                "Speed ceiling exceeded",
                speed_kmh=round(distance / elapsed * 3.6, 1),
                limit_kmh=rules.max_speed_kmh,
            )
            return ValidationResult.reject(RejectionReason.EXCESSIVE_SPEED, distance, elapsed)

        return ValidationResult.accept(distance, elapsed)
