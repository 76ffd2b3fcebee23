"""Tests for overlap detection and the proximity advisory."""

import pytest

from landclaim.core.errors import InvalidGeometry
from landclaim.core.overlap import (
    ClaimFootprint,
    OverlapDetector,
    ProximityLevel,
    assess_proximity,
    claim_polygon,
)
from landclaim.utils.geodesy import BoundingBox, offset

from support import ORIGIN, rectangle


def footprint(ring, owner="bob", id="t-1"):
    return ClaimFootprint(
        id=id,
        owner=owner,
        name=None,
        area_m2=0.0,
        bbox=BoundingBox.from_coordinates(ring),
        polygon=claim_polygon(ring),
    )


class TestClaimPolygon:
    def test_rectangle_is_valid(self):
        polygon = claim_polygon(rectangle(ORIGIN, 50, 50))
        assert polygon.is_valid
        # shapely axis order is lon, lat
        assert polygon.exterior.coords[0] == (ORIGIN.lon, ORIGIN.lat)

    def test_too_few_distinct_vertices(self):
        with pytest.raises(InvalidGeometry):
            claim_polygon([ORIGIN, offset(ORIGIN, 10, 10), ORIGIN])

    def test_self_intersection(self):
        bowtie = [ORIGIN, offset(ORIGIN, 50, 50), offset(ORIGIN, 0, 50), offset(ORIGIN, 50, 0)]
        with pytest.raises(InvalidGeometry):
            claim_polygon(bowtie)


class TestOverlapDetector:
    """Test the two-phase conflict search."""

    @pytest.fixture
    def detector(self):
        return OverlapDetector()

    @pytest.fixture
    def existing(self):
        return footprint(rectangle(ORIGIN, 100, 100))

    def test_disjoint(self, detector, existing):
        candidate = rectangle(offset(ORIGIN, 0, 300), 50, 50)

        assert detector.prefilter(BoundingBox.from_coordinates(candidate), [existing]) == []
        assert detector.find_conflicts(candidate, [existing]) == []

    def test_partial_overlap(self, detector, existing):
        candidate = rectangle(offset(ORIGIN, 0, 90), 100, 100)
        assert detector.find_conflicts(candidate, [existing]) == [existing]

    def test_contained(self, detector, existing):
        candidate = rectangle(offset(ORIGIN, 20, 20), 30, 30)
        assert detector.find_conflicts(candidate, [existing]) == [existing]

    def test_touching_edge_counts(self, detector, existing):
        candidate = rectangle(offset(ORIGIN, 0, 100), 50, 100)
        assert detector.find_conflicts(candidate, [existing]) == [existing]

    def test_boxes_meet_but_shapes_do_not(self, detector):
        lower_left = [ORIGIN, offset(ORIGIN, 0, 100), offset(ORIGIN, 100, 0)]
        upper_right = [
            offset(ORIGIN, 100, 100), offset(ORIGIN, 100, 20), offset(ORIGIN, 20, 100)
        ]
        existing = footprint(lower_left)

        bbox = BoundingBox.from_coordinates(upper_right)
        assert detector.prefilter(bbox, [existing]) == [existing]
        assert detector.find_conflicts(upper_right, [existing]) == []

    def test_exclude_owner(self, detector, existing):
        candidate = rectangle(offset(ORIGIN, 0, 90), 100, 100)

        assert detector.find_conflicts(candidate, [existing], exclude_owner="bob") == []
        assert detector.find_conflicts(candidate, [existing], exclude_owner="carol") == [existing]

    def test_accepts_polygon(self, detector, existing):
        candidate = claim_polygon(rectangle(offset(ORIGIN, 50, 50), 100, 100))
        assert len(detector.find_conflicts(candidate, [existing])) == 1

    def test_multiple_conflicts(self, detector):
        left = footprint(rectangle(ORIGIN, 50, 50), id="left")
        right = footprint(rectangle(offset(ORIGIN, 0, 100), 50, 50), id="right")
        far = footprint(rectangle(offset(ORIGIN, 500, 500), 50, 50), id="far")

        candidate = rectangle(offset(ORIGIN, 10, 40), 70, 20)
        conflicts = detector.find_conflicts(candidate, [left, right, far])
        assert {c.id for c in conflicts} == {"left", "right"}


class TestProximity:
    """Test the warning bands shown while walking."""

    @pytest.fixture
    def territory(self):
        return footprint(rectangle(ORIGIN, 100, 100), owner="bob")

    @pytest.mark.parametrize(
        "west_m,level",
        [
            (150, ProximityLevel.SAFE),
            (70, ProximityLevel.CAUTION),
            (40, ProximityLevel.WARNING),
            (10, ProximityLevel.DANGER),
        ],
    )
    def test_distance_bands(self, territory, west_m, level):
        path = [offset(ORIGIN, 0, -west_m - 20), offset(ORIGIN, 0, -west_m)]
        assessment = assess_proximity(path, [territory], "alice")

        assert assessment.level == level
        assert assessment.distance_m == pytest.approx(west_m, rel=0.01)
        assert not assessment.has_collision

    def test_entering_is_violation(self, territory):
        path = [offset(ORIGIN, 10, -20), offset(ORIGIN, 10, 20)]
        assessment = assess_proximity(path, [territory], "alice")

        assert assessment.level == ProximityLevel.VIOLATION
        assert assessment.has_collision

    def test_single_point_inside(self, territory):
        path = [offset(ORIGIN, 50, 50)]
        assert assess_proximity(path, [territory], "alice").has_collision

    def test_own_territory_ignored(self, territory):
        path = [offset(ORIGIN, 10, -20), offset(ORIGIN, 10, 20)]
        assessment = assess_proximity(path, [territory], "bob")

        assert assessment.level == ProximityLevel.SAFE
        assert assessment.distance_m is None

    def test_nothing_nearby(self):
        assert assess_proximity([ORIGIN], [], "alice").level == ProximityLevel.SAFE
