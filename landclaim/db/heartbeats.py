"""Player heartbeat persistence."""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import and_

from ..utils.geodesy import BoundingBox, Coordinate
from ..utils.timeutil import Clock, utcnow
from .connection import Database
from .models import PlayerHeartbeat

logger = structlog.get_logger()


class HeartbeatRepository:
    """
    Upserts and reads player positions.

    Each user writes only their own row, so concurrent reports from different
    users never conflict.
    """

    def __init__(
        self,
        database: Database,
        online_window_s: float = 300.0,
        offline_backdate_s: float = 600.0,
        clock: Clock = utcnow,
    ):
        self.database = database
        self.online_window_s = online_window_s
        self.offline_backdate_s = offline_backdate_s
        self.clock = clock

    def report(self, user_id: str, position: Coordinate) -> datetime:
        """Insert or refresh the caller's position. Returns the stored ``last_seen``."""
        now = self.clock()
        with self.database.get_session() as session:
            session.merge(
                PlayerHeartbeat(
                    user_id=user_id,
                    latitude=position.lat,
                    longitude=position.lon,
                    last_seen=now,
                )
            )
        logger.debug("Heartbeat reported", user_id=user_id)
        return now

    def mark_offline(self, user_id: str) -> bool:
        """Back-date ``last_seen`` so the user reads as offline immediately."""
        with self.database.get_session() as session:
            heartbeat = session.get(PlayerHeartbeat, user_id)
            if heartbeat is None:
                return False
            heartbeat.last_seen = self.clock() - timedelta(seconds=self.offline_backdate_s)
        logger.info("Player marked offline", user_id=user_id)
        return True

    def is_online(self, user_id: str, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        with self.database.get_session() as session:
            heartbeat = session.get(PlayerHeartbeat, user_id)
            if heartbeat is None:
                return False
            return now - heartbeat.last_seen < timedelta(seconds=self.online_window_s)

    def online_positions(
        self,
        bbox: BoundingBox,
        seen_after: datetime,
        exclude_user: Optional[str] = None,
    ) -> List[Tuple[float, float]]:
        """(lat, lon) of heartbeats inside ``bbox`` with ``last_seen > seen_after``."""
        with self.database.get_session() as session:
            query = session.query(PlayerHeartbeat.latitude, PlayerHeartbeat.longitude).filter(
                and_(
                    PlayerHeartbeat.latitude >= bbox.min_lat,
                    PlayerHeartbeat.latitude <= bbox.max_lat,
                    PlayerHeartbeat.longitude >= bbox.min_lon,
                    PlayerHeartbeat.longitude <= bbox.max_lon,
                    PlayerHeartbeat.last_seen > seen_after,
                )
            )
            if exclude_user is not None:
                query = query.filter(PlayerHeartbeat.user_id != exclude_user)
            return [(lat, lon) for lat, lon in query.all()]
