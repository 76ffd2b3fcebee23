"""
landclaim - walk-to-claim territory engine.

Validates walked GPS paths, closes them into polygons, and commits them as
non-overlapping territories. Also serves simplified map geometry and
nearby-player density.
"""

__version__ = "0.1.0"
