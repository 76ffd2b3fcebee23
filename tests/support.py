"""Shared builders for claim tests."""

import math
from datetime import datetime, timedelta
from typing import List, Sequence

from landclaim.core.validator import LocationSample
from landclaim.utils.geodesy import Coordinate, METERS_PER_DEGREE, offset

# Close to the equator the fixed degree scale is nearly exact
ORIGIN = Coordinate(lat=0.001, lon=0.001)
T0 = datetime(2026, 1, 1, 12, 0, 0)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def rectangle(origin: Coordinate, width_m: float, height_m: float) -> List[Coordinate]:
    """Counter-clockwise rectangle corners (open ring), ``width_m`` east by ``height_m`` north."""
    return [
        origin,
        offset(origin, 0, width_m),
        offset(origin, height_m, width_m),
        offset(origin, height_m, 0),
    ]


def walk(corners: Sequence[Coordinate], step_m: float = 10.0) -> List[Coordinate]:
    """
    Points along the closed loop through ``corners`` about ``step_m`` apart.

    The returned list starts at the first corner and ends back on it.
    """
    loop = list(corners) + [corners[0]]
    points = [loop[0]]
    for a, b in zip(loop, loop[1:]):
        north = (b.lat - a.lat) * METERS_PER_DEGREE
        east = (b.lon - a.lon) * METERS_PER_DEGREE
        steps = max(1, int(round(math.hypot(north, east) / step_m)))
        for i in range(1, steps + 1):
            points.append(offset(a, north * i / steps, east * i / steps))
    return points


def samples(
    coordinates: Sequence[Coordinate], start: datetime = T0, step_s: float = 10.0
) -> List[LocationSample]:
    return [
        LocationSample(coordinate=c, timestamp=start + timedelta(seconds=i * step_s))
        for i, c in enumerate(coordinates)
    ]


def loop_samples(
    origin: Coordinate,
    width_m: float,
    height_m: float,
    start: datetime = T0,
    step_m: float = 10.0,
    step_s: float = 10.0,
) -> List[LocationSample]:
    """
    A walk around a rectangle, stopping one step short of the start.

    The defaults give one fix every 10 m at 3.6 km/h; devices usually report
    at 1 Hz, so pass ``step_s=1`` with the distance covered in a second.
    """
    return samples(walk(rectangle(origin, width_m, height_m), step_m)[:-1], start, step_s)


def straight_samples(
    origin: Coordinate, speed_kmh: float, count: int, start: datetime = T0
) -> List[LocationSample]:
    """``count`` fixes one second apart heading east at ``speed_kmh``."""
    step = speed_kmh / 3.6
    return samples([offset(origin, 0, i * step) for i in range(count)], start, 1.0)
