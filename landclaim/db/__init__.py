"""
Database utilities and models.

This package provides:
- SQLAlchemy models for territories and player heartbeats
- Database connection management
- The territory store with its atomic commit
- Heartbeat persistence for density estimation
"""

from .connection import Database, db
from .heartbeats import HeartbeatRepository
from .locking import RegionLocks
from .models import Base, Territory, TerritoryStatus, PlayerHeartbeat
from .store import (
    TerritoryStore, StoreOptions, TerritoryRecord, OverlapSummary, VisibleTerritory
)

__all__ = [
    # Connection management
    'Database', 'db',

    # Stores
    'TerritoryStore', 'StoreOptions', 'TerritoryRecord', 'OverlapSummary',
    'VisibleTerritory', 'HeartbeatRepository', 'RegionLocks',

    # Models
    'Base', 'Territory', 'TerritoryStatus', 'PlayerHeartbeat',
]
