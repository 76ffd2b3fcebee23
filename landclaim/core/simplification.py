"""
Level-of-detail geometry for map queries.

Territories are simplified with topology-preserving Douglas-Peucker at a
tolerance chosen from the requested detail level (a map-zoom-like scalar).
Coarser levels are derived from the next finer result, and a pass is only
kept when it yields a valid polygon with no more vertices than its input, so
vertex counts never grow as the detail level drops.
"""

import threading
from collections import OrderedDict
from typing import Any, Dict, Hashable, Sequence, Tuple, Union

import structlog
from shapely.geometry import Polygon, mapping

from ..utils.geodesy import Coordinate, ring_to_polygon

logger = structlog.get_logger()

# (minimum detail level, tolerance in degrees), finest first
TOLERANCE_BUCKETS: Tuple[Tuple[float, float], ...] = (
    (17, 0.0),
    (15, 0.00001),
    (13, 0.0001),
    (float("-inf"), 0.001),
)


def bucket_for(detail_level: float) -> int:
    """Index into TOLERANCE_BUCKETS for a detail level."""
    for index, (min_level, _) in enumerate(TOLERANCE_BUCKETS):
        if detail_level >= min_level:
            return index
    return len(TOLERANCE_BUCKETS) - 1


def tolerance_for(detail_level: float) -> float:
    return TOLERANCE_BUCKETS[bucket_for(detail_level)][1]


def vertex_count(polygon: Polygon) -> int:
    """Distinct exterior vertices (closing point not counted)."""
    return len(polygon.exterior.coords) - 1


def _usable(candidate, current: Polygon) -> bool:
    return (
        isinstance(candidate, Polygon)
        and not candidate.is_empty
        and candidate.is_valid
        and vertex_count(candidate) >= 3
        and vertex_count(candidate) <= vertex_count(current)
    )


class SimplificationEngine:
    """Pure (geometry, detail level) -> geometry, with a per-territory cache."""

    def __init__(self, cache_size: int = 4096):
        self.cache_size = cache_size
        self._cache: "OrderedDict[Tuple[Hashable, int], Polygon]" = OrderedDict()
        self._lock = threading.Lock()

    def simplify(
        self, geometry: Union[Polygon, Sequence[Coordinate]], detail_level: float
    ) -> Polygon:
        """
        Reduce vertices for ``detail_level`` without introducing self-intersections.

        Args:
            geometry: Valid polygon, or its ring
            detail_level: Zoom-like level, higher means more detail

        Returns:
            Valid simple polygon
        """
        polygon = geometry if isinstance(geometry, Polygon) else ring_to_polygon(geometry)
        target = bucket_for(detail_level)

        result = polygon
        for _, tolerance in TOLERANCE_BUCKETS[1 : target + 1]:
            candidate = result.simplify(tolerance, preserve_topology=True)
            if _usable(candidate, result):
                result = candidate
        return result

    def simplify_cached(
        self, key: Hashable, geometry: Polygon, detail_level: float
    ) -> Polygon:
        """
        Like ``simplify`` but memoised per ``(key, tolerance bucket)``.

        ``key`` must identify an immutable geometry, e.g. a territory id.
        """
        cache_key = (key, bucket_for(detail_level))
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache.move_to_end(cache_key)
                return cached

        result = self.simplify(geometry, detail_level)

        with self._lock:
            self._cache[cache_key] = result
            self._cache.move_to_end(cache_key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return result

    def invalidate(self, key: Hashable):
        """Drop every cached level of one geometry."""
        with self._lock:
            for cache_key in [k for k in self._cache if k[0] == key]:
                del self._cache[cache_key]

    @staticmethod
    def to_geojson(polygon: Polygon) -> Dict[str, Any]:
        geojson = mapping(polygon)
        # tuples -> lists so the payload is plain JSON
        return {
            "type": geojson["type"],
            "coordinates": [[list(pt) for pt in ring] for ring in geojson["coordinates"]],
        }
