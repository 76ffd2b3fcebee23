"""
In-progress claim attempts.

A ``CandidatePath`` belongs to exactly one client session and is mutated only
through its ``PathRecorder``; nothing here is shared between users, so no
locking is involved.

State machine::

    EMPTY -> RECORDING -> CLOSED -> COMMITTED
                 ^          |   \\-> REJECTED
                 |__________|
         (resume / area out of bounds)

Any non-terminal state can move to ABANDONED on cancel, inactivity timeout or,
with the ABANDON continuity policy, a stale gap.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

import structlog

from ..utils.geodesy import Coordinate
from .area import AreaCalculator
from .closure import ClosureDetector
from .errors import AreaOutOfBounds, InvalidGeometry, InvalidPathState
from .overlap import claim_polygon
from .rules import ClaimRules, ContinuityPolicy
from .validator import (
    LocationSample,
    LocationSampleValidator,
    RejectionReason,
    ValidationResult,
)

logger = structlog.get_logger()


class PathState(str, Enum):
    EMPTY = "empty"
    RECORDING = "recording"
    CLOSED = "closed"
    COMMITTED = "committed"
    REJECTED = "rejected"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset({PathState.COMMITTED, PathState.REJECTED, PathState.ABANDONED})


@dataclass
class CandidatePath:
    """Point sequence of one claim attempt."""

    owner: str
    points: List[LocationSample] = field(default_factory=list)
    state: PathState = PathState.EMPTY
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    last_fix_at: Optional[datetime] = None  # latest accepted or skipped fix
    ring: Optional[List[Coordinate]] = None  # closed ring once CLOSED
    area_m2: Optional[float] = None
    restarts: int = 0
    territory_id: Optional[str] = None

    @property
    def coordinates(self) -> List[Coordinate]:
        return [p.coordinate for p in self.points]

    @property
    def last_point(self) -> Optional[LocationSample]:
        return self.points[-1] if self.points else None


class AppendAction(str, Enum):
    RECORDED = "recorded"
    SKIPPED = "skipped"  # within jitter distance of the last point
    DROPPED = "dropped"  # rejected by the validator, path continues
    RESTARTED = "restarted"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class AppendOutcome:
    action: AppendAction
    validation: ValidationResult
    point_count: int

    @property
    def accepted(self) -> bool:
        return self.action in (AppendAction.RECORDED, AppendAction.RESTARTED)


@dataclass(frozen=True)
class ClosedPath:
    """Result of a successful closure."""

    ring: List[Coordinate]
    area_m2: float
    point_count: int


class PathRecorder:
    """Owns one CandidatePath and drives its state machine."""

    def __init__(
        self,
        owner: str,
        rules: Optional[ClaimRules] = None,
        validator: Optional[LocationSampleValidator] = None,
        closure: Optional[ClosureDetector] = None,
        area_calculator: Optional[AreaCalculator] = None,
    ):
        self.rules = rules or ClaimRules()
        self.validator = validator or LocationSampleValidator(self.rules)
        self.closure = closure or ClosureDetector(self.rules)
        self.area_calculator = area_calculator or AreaCalculator(self.rules)
        self.path = CandidatePath(owner=owner)

    @property
    def state(self) -> PathState:
        return self.path.state

    def _require(self, operation: str, *states: PathState):
        if self.path.state not in states:
            raise InvalidPathState(operation, self.path.state.value)

    def _start(self, sample: LocationSample):
        self.path.points = [sample]
        self.path.started_at = sample.timestamp
        self.path.last_fix_at = sample.timestamp
        self.path.state = PathState.RECORDING

    def append(self, sample: LocationSample) -> AppendOutcome:
        """
        Feed one fix into the path.

        Raises:
            InvalidPathState: path is CLOSED or already terminal
        """
        self._require("append to", PathState.EMPTY, PathState.RECORDING)
        path = self.path
        path.last_activity_at = sample.timestamp

        if path.state == PathState.EMPTY:
            self._start(sample)
            logger.info("Claim path started", owner=path.owner)
            return AppendOutcome(AppendAction.RECORDED, ValidationResult.accept(), 1)

        previous = path.last_point
        result = self.validator.validate(previous, sample, path.last_fix_at)

        if result.accepted:
            path.last_fix_at = sample.timestamp
            if result.distance_m <= self.rules.min_point_spacing_m:
                return AppendOutcome(AppendAction.SKIPPED, result, len(path.points))
            path.points.append(sample)
            return AppendOutcome(AppendAction.RECORDED, result, len(path.points))

        if result.reason == RejectionReason.STALE_GAP:
            if self.rules.continuity_policy == ContinuityPolicy.RESTART:
                dropped = len(path.points)
                self._start(sample)
                path.restarts += 1
                logger.info("Claim path restarted", owner=path.owner, dropped_points=dropped)
                return AppendOutcome(AppendAction.RESTARTED, result, 1)

            path.state = PathState.ABANDONED
            logger.info("Claim path abandoned after stale gap", owner=path.owner)
            return AppendOutcome(AppendAction.ABANDONED, result, len(path.points))

        logger.info(
            "Fix dropped",
            owner=path.owner,
            reason=result.reason.value,
            distance_m=round(result.distance_m, 1),
            elapsed_s=result.elapsed_s,
        )
        return AppendOutcome(AppendAction.DROPPED, result, len(path.points))

    def request_close(self) -> ClosedPath:
        """
        Close the loop and compute its area.

        On IncompletePath, ClosureTooFar or AreaOutOfBounds the path stays
        RECORDING so the user can keep walking. A ring that crosses itself
        rejects the attempt.

        Raises:
            InvalidPathState: path is not RECORDING
            IncompletePath, ClosureTooFar, AreaOutOfBounds, InvalidGeometry
        """
        self._require("close", PathState.RECORDING)
        path = self.path

        ring = self.closure.check(path.coordinates)

        area = self.area_calculator.area_m2(ring)
        try:
            self.area_calculator.check_bounds(area)
        except AreaOutOfBounds:
            logger.info("Closure refused", owner=path.owner, area_m2=round(area))
            raise

        try:
            claim_polygon(ring)
        except InvalidGeometry:
            path.state = PathState.REJECTED
            logger.info("Claim path rejected", owner=path.owner, reason="self_intersection")
            raise

        path.ring = ring
        path.area_m2 = area
        path.state = PathState.CLOSED
        logger.info(
            "Claim path closed", owner=path.owner, points=len(path.points), area_m2=round(area)
        )
        return ClosedPath(ring=ring, area_m2=area, point_count=len(path.points))

    def resume(self):
        """Reopen a CLOSED path so the user can adjust the loop."""
        self._require("resume", PathState.CLOSED)
        self.path.ring = None
        self.path.area_m2 = None
        self.path.state = PathState.RECORDING

    def closed_path(self) -> ClosedPath:
        self._require("read the ring of", PathState.CLOSED)
        return ClosedPath(self.path.ring, self.path.area_m2, len(self.path.points))

    def mark_committed(self, territory_id: str):
        self._require("commit", PathState.CLOSED)
        self.path.territory_id = territory_id
        self.path.state = PathState.COMMITTED

    def mark_rejected(self):
        self._require("reject", PathState.CLOSED)
        self.path.state = PathState.REJECTED

    def cancel(self):
        """Discard the attempt. Has no effect on the territory store."""
        if self.path.state in TERMINAL_STATES:
            raise InvalidPathState("cancel", self.path.state.value)
        self.path.state = PathState.ABANDONED
        logger.info("Claim path cancelled", owner=self.path.owner)

    def is_expired(self, now: datetime, timeout_s: Optional[float] = None) -> bool:
        """True when a live path has been idle longer than the inactivity timeout."""
        if self.path.state in TERMINAL_STATES or self.path.last_activity_at is None:
            return False
        timeout = timeout_s if timeout_s is not None else self.rules.path_inactivity_timeout_s
        return now - self.path.last_activity_at > timedelta(seconds=timeout)

    def touch(self, now: datetime):
        """Record server-side activity for the inactivity timeout."""
        self.path.last_activity_at = now

    def expire(self):
        if self.path.state not in TERMINAL_STATES:
            self.path.state = PathState.ABANDONED
            logger.info("Claim path expired", owner=self.path.owner)
