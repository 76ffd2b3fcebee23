"""Utility helpers."""

from .geodesy import BoundingBox, Coordinate, haversine_m

__all__ = ['BoundingBox', 'Coordinate', 'haversine_m']
