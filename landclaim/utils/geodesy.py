"""
Geodetic helpers shared by the claim engine.

Coordinates are handled as (latitude, longitude) pairs in degrees on WGS-84.
Shapely geometries and WKT use the GIS axis order (x=longitude, y=latitude);
the conversion happens only in this module.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np
from shapely.geometry import Polygon

EARTH_RADIUS_M = 6371008.8

# Fixed planar scale used by the area formula. Only meaningful for small claims.
METERS_PER_DEGREE = 111320.0


@dataclass(frozen=True)
class Coordinate:
    """A WGS-84 position in degrees."""

    lat: float
    lon: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"longitude out of range: {self.lon}")

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in degrees."""

    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @classmethod
    def from_coordinates(cls, coordinates: Iterable[Coordinate]) -> "BoundingBox":
        coords = list(coordinates)
        if not coords:
            raise ValueError("cannot bound an empty coordinate set")
        lats = [c.lat for c in coords]
        lons = [c.lon for c in coords]
        return cls(min(lats), min(lons), max(lats), max(lons))

    @classmethod
    def around(cls, center: Coordinate, radius_m: float) -> "BoundingBox":
        """
        Box enclosing a circle of ``radius_m`` around ``center``.

        Longitudes are not wrapped; near the antimeridian the box may extend
        past ±180. Use ``wrapped`` before querying stored positions.
        """
        dlat = radius_m / METERS_PER_DEGREE
        cos_lat = max(math.cos(math.radians(center.lat)), 1e-6)
        dlon = radius_m / (METERS_PER_DEGREE * cos_lat)
        if dlon >= 180.0:
            min_lon, max_lon = -180.0, 180.0
        else:
            min_lon, max_lon = center.lon - dlon, center.lon + dlon
        return cls(
            max(center.lat - dlat, -90.0),
            min_lon,
            min(center.lat + dlat, 90.0),
            max_lon,
        )

    def wrapped(self) -> List["BoundingBox"]:
        """Split a box crossing the antimeridian into boxes inside [-180, 180]."""
        if self.min_lon < -180.0:
            return [
                BoundingBox(self.min_lat, self.min_lon + 360.0, self.max_lat, 180.0),
                BoundingBox(self.min_lat, -180.0, self.max_lat, self.max_lon),
            ]
        if self.max_lon > 180.0:
            return [
                BoundingBox(self.min_lat, self.min_lon, self.max_lat, 180.0),
                BoundingBox(self.min_lat, -180.0, self.max_lat, self.max_lon - 360.0),
            ]
        return [self]

    def extent_m(self) -> Tuple[float, float]:
        """(north-south, east-west) size in meters, east-west along the widest parallel."""
        if self.min_lat <= 0.0 <= self.max_lat:
            widest = 0.0
        else:
            widest = min(abs(self.min_lat), abs(self.max_lat))
        north = (self.max_lat - self.min_lat) * METERS_PER_DEGREE
        east = (self.max_lon - self.min_lon) * METERS_PER_DEGREE * math.cos(math.radians(widest))
        return north, east

    def intersects(self, other: "BoundingBox") -> bool:
        return (
            self.min_lat <= other.max_lat
            and self.max_lat >= other.min_lat
            and self.min_lon <= other.max_lon
            and self.max_lon >= other.min_lon
        )


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters."""
    lat1, lon1 = math.radians(a.lat), math.radians(a.lon)
    lat2, lon2 = math.radians(b.lat), math.radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def haversine_many_m(
    origin: Coordinate, lats: np.ndarray, lons: np.ndarray
) -> np.ndarray:
    """Vectorised great-circle distances from ``origin`` to many points."""
    lat1 = math.radians(origin.lat)
    lon1 = math.radians(origin.lon)
    lat2 = np.radians(np.asarray(lats, dtype=float))
    lon2 = np.radians(np.asarray(lons, dtype=float))

    h = (
        np.sin((lat2 - lat1) / 2) ** 2
        + math.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * np.arcsin(np.minimum(1.0, np.sqrt(h)))


def close_ring(coordinates: Sequence[Coordinate]) -> List[Coordinate]:
    """Return the ring with the first coordinate repeated at the end."""
    ring = list(coordinates)
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def open_ring(coordinates: Sequence[Coordinate]) -> List[Coordinate]:
    """Return the ring without a trailing duplicate of the first coordinate."""
    ring = list(coordinates)
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring.pop()
    return ring


def ring_to_polygon(coordinates: Sequence[Coordinate]) -> Polygon:
    """Build a shapely polygon (lon, lat axis order) from a ring."""
    return Polygon([(c.lon, c.lat) for c in close_ring(coordinates)])


def polygon_to_ring(polygon: Polygon) -> List[Coordinate]:
    """Exterior ring of a shapely polygon as closed coordinates."""
    return [Coordinate(lat=y, lon=x) for x, y in polygon.exterior.coords]


def offset(origin: Coordinate, north_m: float, east_m: float) -> Coordinate:
    """Shift a coordinate by a planar offset using the fixed degree scale."""
    return Coordinate(
        lat=origin.lat + north_m / METERS_PER_DEGREE,
        lon=origin.lon + east_m / METERS_PER_DEGREE,
    )
