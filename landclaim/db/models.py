"""Database models for committed territories and player heartbeats."""

from sqlalchemy import Column, Integer, String, Float, Text, DateTime, Index, Uuid
from sqlalchemy.orm import declarative_base
import uuid

from ..utils.timeutil import utcnow

Base = declarative_base()


class TerritoryStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    ABANDONED = "abandoned"


class Territory(Base):
    """A committed claim."""

    __tablename__ = "territories"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner = Column(String(64), nullable=False, index=True)
    name = Column(String(255))

    # Geometry: closed WGS-84 ring as WKT, lon/lat order
    polygon = Column(Text, nullable=False)
    path = Column(Text)  # JSON list of {"lat", "lon"} as walked

    # Redundant bounding box for the prefilter
    bbox_min_lat = Column(Float, nullable=False)
    bbox_max_lat = Column(Float, nullable=False)
    bbox_min_lon = Column(Float, nullable=False)
    bbox_max_lon = Column(Float, nullable=False)

    # Statistics
    area = Column(Float, nullable=False)  # square meters
    point_count = Column(Integer)

    # Lifecycle
    status = Column(String(20), nullable=False, default=TerritoryStatus.ACTIVE)
    started_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    last_active_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "idx_territories_bbox",
            "bbox_min_lat", "bbox_max_lat", "bbox_min_lon", "bbox_max_lon",
        ),
    )


class PlayerHeartbeat(Base):
    """Last reported position of a player. One row per user, never deleted."""

    __tablename__ = "player_heartbeats"

    user_id = Column(String(64), primary_key=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    last_seen = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("idx_player_heartbeats_position", "latitude", "longitude"),
    )
