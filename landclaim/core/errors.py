"""
Failure taxonomy for claim attempts.

Per-sample anti-cheat rejections are not exceptions; they come back as
``ValidationResult`` values from the validator. Everything here aborts the
current operation.
"""

from typing import Optional


class LandClaimError(Exception):
    """Base class for engine failures."""

    code = "land_claim_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClaimValidationError(LandClaimError):
    """The candidate geometry cannot become a territory as drawn."""

    code = "validation_error"


class IncompletePath(ClaimValidationError):
    code = "incomplete_path"

    def __init__(self, point_count: int, required: int):
        super().__init__(
            f"closure needs at least {required} points, path has {point_count}"
        )
        self.point_count = point_count
        self.required = required


class ClosureTooFar(ClaimValidationError):
    code = "closure_too_far"

    def __init__(self, gap_m: float, limit_m: float):
        super().__init__(
            f"start and end are {gap_m:.1f} m apart, must be under {limit_m:.0f} m"
        )
        self.gap_m = gap_m
        self.limit_m = limit_m


class AreaOutOfBounds(ClaimValidationError):
    code = "area_out_of_bounds"

    def __init__(self, area_m2: float, min_m2: float, max_m2: float):
        super().__init__(
            f"area {area_m2:.0f} m² outside allowed range [{min_m2:.0f}, {max_m2:.0f}]"
        )
        self.area_m2 = area_m2
        self.min_m2 = min_m2
        self.max_m2 = max_m2


class InvalidGeometry(ClaimValidationError):
    code = "invalid_geometry"


class OverlapConflict(LandClaimError):
    """The candidate intersects an existing claim.

    Only the number of conflicting claims is carried; owners and outlines of
    other users' territories are never attached.
    """

    code = "overlap_conflict"

    def __init__(self, conflict_count: int = 1):
        super().__init__("claim overlaps an existing territory")
        self.conflict_count = conflict_count


class InvalidPathState(LandClaimError):
    code = "invalid_path_state"

    def __init__(self, operation: str, state: str):
        super().__init__(f"cannot {operation} a path in state {state}")
        self.operation = operation
        self.state = state


class StorageFailure(LandClaimError):
    code = "storage_failure"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class Unauthenticated(LandClaimError):
    code = "unauthenticated"

    def __init__(self, message: str = "user not authenticated"):
        super().__init__(message)
