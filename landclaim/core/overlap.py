"""
Conflict detection between a candidate claim and committed territories.

Two phases:

1. Bounding-box prefilter - cheap interval test on the stored boxes
2. Exact intersection - shapely predicate on the surviving candidates

Touching boundaries count as an intersection, matching ``ST_Intersects``.
The same footprints also drive the walking-time proximity advisory.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import structlog
from shapely.geometry import LineString, Point, Polygon
from shapely.prepared import prep
from shapely.validation import explain_validity

from ..utils.geodesy import (
    BoundingBox,
    Coordinate,
    haversine_many_m,
    open_ring,
    ring_to_polygon,
)
from .errors import InvalidGeometry

logger = structlog.get_logger()


def claim_polygon(ring: Sequence[Coordinate]) -> Polygon:
    """
    Build and validate the polygon of a claim ring.

    Raises:
        InvalidGeometry: fewer than three distinct vertices, or the ring is
            not a simple polygon
    """
    distinct = {(c.lat, c.lon) for c in open_ring(ring)}
    if len(distinct) < 3:
        raise InvalidGeometry(f"ring needs at least 3 distinct vertices, got {len(distinct)}")

    polygon = ring_to_polygon(ring)
    if not polygon.is_valid:
        raise InvalidGeometry(f"ring is not a simple polygon: {explain_validity(polygon)}")
    return polygon


@dataclass(frozen=True)
class ClaimFootprint:
    """What the detector needs to know about a committed territory."""

    id: str
    owner: str
    name: Optional[str]
    area_m2: float
    bbox: BoundingBox
    polygon: Polygon


class OverlapDetector:
    """Finds committed footprints that a candidate polygon intersects."""

    def prefilter(
        self, bbox: BoundingBox, footprints: Iterable[ClaimFootprint]
    ) -> List[ClaimFootprint]:
        return [f for f in footprints if f.bbox.intersects(bbox)]

    def find_conflicts(
        self,
        candidate: Union[Polygon, Sequence[Coordinate]],
        footprints: Iterable[ClaimFootprint],
        exclude_owner: Optional[str] = None,
    ) -> List[ClaimFootprint]:
        """
        Return the footprints that truly intersect ``candidate``.

        Args:
            candidate: Claim polygon, or its ring
            footprints: Committed territories, usually already prefiltered
            exclude_owner: Ignore this owner's territories
        """
        polygon = candidate if isinstance(candidate, Polygon) else claim_polygon(candidate)
        min_lon, min_lat, max_lon, max_lat = polygon.bounds
        bbox = BoundingBox(min_lat, min_lon, max_lat, max_lon)

        prepared = prep(polygon)
        conflicts = []
        for footprint in self.prefilter(bbox, footprints):
            if exclude_owner is not None and footprint.owner == exclude_owner:
                continue
            if prepared.intersects(footprint.polygon):
                conflicts.append(footprint)

        if conflicts:
            logger.info("Overlap detected", conflicts=len(conflicts))
        return conflicts


class ProximityLevel(str, Enum):
    SAFE = "safe"
    CAUTION = "caution"
    WARNING = "warning"
    DANGER = "danger"
    VIOLATION = "violation"


@dataclass(frozen=True)
class ProximityAssessment:
    level: ProximityLevel
    distance_m: Optional[float] = None  # to the nearest foreign vertex

    @property
    def has_collision(self) -> bool:
        return self.level == ProximityLevel.VIOLATION


# (exclusive lower bound in meters, level), checked in order
PROXIMITY_BANDS = (
    (100.0, ProximityLevel.SAFE),
    (50.0, ProximityLevel.CAUTION),
    (25.0, ProximityLevel.WARNING),
)


def assess_proximity(
    path: Sequence[Coordinate],
    footprints: Iterable[ClaimFootprint],
    owner: str,
) -> ProximityAssessment:
    """
    Warn a walking user about other users' territories.

    Entering or crossing a foreign territory is a violation; otherwise the
    distance from the latest point to the nearest foreign vertex picks the
    warning band.
    """
    foreign = [f for f in footprints if f.owner != owner]
    if not path or not foreign:
        return ProximityAssessment(ProximityLevel.SAFE)

    track = Point(path[0].lon, path[0].lat) if len(path) == 1 else LineString(
        [(c.lon, c.lat) for c in path]
    )
    for footprint in foreign:
        if track.intersects(footprint.polygon):
            logger.info("Path entered a foreign territory", owner=owner)
            return ProximityAssessment(ProximityLevel.VIOLATION, 0.0)

    vertices = np.concatenate([np.asarray(f.polygon.exterior.coords) for f in foreign])
    distance = float(haversine_many_m(path[-1], vertices[:, 1], vertices[:, 0]).min())

    for bound, level in PROXIMITY_BANDS:
        if distance > bound:
            return ProximityAssessment(level, distance)
    return ProximityAssessment(ProximityLevel.DANGER, distance)
