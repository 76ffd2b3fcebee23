"""
Durable set of committed territories.

``commit`` is the one correctness-critical write: the overlap test is re-run
against the current committed set inside the same transaction that inserts
the new row, while the candidate's region is locked. Everything else is a
read that may be slightly stale.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog
from shapely import wkt
from shapely.geometry import Polygon
from sqlalchemy import and_, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.area import AreaCalculator
from ..core.errors import InvalidGeometry, OverlapConflict, StorageFailure, Unauthenticated
from ..core.overlap import ClaimFootprint, OverlapDetector, claim_polygon
from ..core.rules import ClaimRules
from ..core.simplification import SimplificationEngine
from ..utils.geodesy import BoundingBox, Coordinate, polygon_to_ring
from ..utils.timeutil import Clock, utcnow
from .connection import Database
from .locking import RegionLocks, advisory_key
from .models import Territory, TerritoryStatus

logger = structlog.get_logger()


@dataclass
class StoreOptions:
    """Territory store limits."""

    visible_limit: int = 100
    inactive_after_days: int = 30
    abandoned_after_days: int = 90
    commit_max_attempts: int = 3
    commit_backoff_s: float = 0.05
    region_lock_cell_deg: float = 0.01
    region_lock_timeout_s: float = 5.0
    region_lock_stripes: int = 1024
    simplify_cache_size: int = 4096

    @classmethod
    def from_settings(cls, settings) -> "StoreOptions":
        return cls(
            visible_limit=settings.visible_limit,
            inactive_after_days=settings.inactive_after_days,
            abandoned_after_days=settings.abandoned_after_days,
            commit_max_attempts=settings.commit_max_attempts,
            commit_backoff_s=settings.commit_backoff_s,
            region_lock_cell_deg=settings.region_lock_cell_deg,
            region_lock_timeout_s=settings.region_lock_timeout_s,
            region_lock_stripes=settings.region_lock_stripes,
            simplify_cache_size=settings.simplify_cache_size,
        )


@dataclass(frozen=True)
class TerritoryRecord:
    """Detached snapshot of a committed territory."""

    id: uuid.UUID
    owner: str
    name: Optional[str]
    area_m2: float
    ring: List[Coordinate]
    bbox: BoundingBox
    point_count: Optional[int]
    status: str
    started_at: Optional[datetime]
    created_at: datetime
    last_active_at: datetime


@dataclass(frozen=True)
class OverlapSummary:
    id: uuid.UUID
    owner: str
    name: Optional[str]
    area_m2: float


@dataclass(frozen=True)
class VisibleTerritory:
    id: uuid.UUID
    owner: str
    name: Optional[str]
    area_m2: float
    status: str
    created_at: datetime
    geometry: Dict[str, Any]  # GeoJSON polygon, simplified


def _bbox_of(territory: Territory) -> BoundingBox:
    return BoundingBox(
        territory.bbox_min_lat,
        territory.bbox_min_lon,
        territory.bbox_max_lat,
        territory.bbox_max_lon,
    )


class TerritoryStore:
    """
    Committed territories with an atomic commit-if-no-conflict.

    Lifecycle is derived from ``last_active_at``: active, then inactive after
    ``inactive_after_days``, then abandoned (reclaimable) after
    ``abandoned_after_days``. Non-abandoned territories never intersect.
    """

    def __init__(
        self,
        database: Database,
        rules: Optional[ClaimRules] = None,
        options: Optional[StoreOptions] = None,
        detector: Optional[OverlapDetector] = None,
        simplifier: Optional[SimplificationEngine] = None,
        region_locks: Optional[RegionLocks] = None,
        clock: Clock = utcnow,
    ):
        self.database = database
        self.rules = rules or ClaimRules()
        self.options = options or StoreOptions()
        self.detector = detector or OverlapDetector()
        self.simplifier = simplifier or SimplificationEngine(self.options.simplify_cache_size)
        self.region_locks = region_locks or RegionLocks(
            self.options.region_lock_cell_deg,
            self.options.region_lock_timeout_s,
            self.options.region_lock_stripes,
        )
        self.area_calculator = AreaCalculator(self.rules)
        self.clock = clock

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def _abandoned_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.options.abandoned_after_days)

    def _inactive_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.options.inactive_after_days)

    def status_at(self, last_active_at: datetime, now: datetime) -> str:
        if last_active_at < self._abandoned_cutoff(now):
            return TerritoryStatus.ABANDONED
        if last_active_at < self._inactive_cutoff(now):
            return TerritoryStatus.INACTIVE
        return TerritoryStatus.ACTIVE

    def _record(self, territory: Territory, now: datetime) -> TerritoryRecord:
        return TerritoryRecord(
            id=territory.id,
            owner=territory.owner,
            name=territory.name,
            area_m2=territory.area,
            ring=polygon_to_ring(wkt.loads(territory.polygon)),
            bbox=_bbox_of(territory),
            point_count=territory.point_count,
            status=self.status_at(territory.last_active_at, now),
            started_at=territory.started_at,
            created_at=territory.created_at,
            last_active_at=territory.last_active_at,
        )

    def _footprint(self, territory: Territory) -> ClaimFootprint:
        return ClaimFootprint(
            id=str(territory.id),
            owner=territory.owner,
            name=territory.name,
            area_m2=territory.area,
            bbox=_bbox_of(territory),
            polygon=wkt.loads(territory.polygon),
        )

    def _claimed_in(self, session: Session, bbox: BoundingBox, now: datetime):
        """Bounding-box prefilter over non-abandoned territories."""
        return session.query(Territory).filter(
            and_(
                Territory.bbox_min_lat <= bbox.max_lat,
                Territory.bbox_max_lat >= bbox.min_lat,
                Territory.bbox_min_lon <= bbox.max_lon,
                Territory.bbox_max_lon >= bbox.min_lon,
                Territory.last_active_at >= self._abandoned_cutoff(now),
            )
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(
        self,
        ring: Sequence[Coordinate],
        owner: str,
        name: Optional[str] = None,
        started_at: Optional[datetime] = None,
        point_count: Optional[int] = None,
        path: Optional[Sequence[Coordinate]] = None,
    ) -> TerritoryRecord:
        """
        Insert ``ring`` as a territory of ``owner`` if it conflicts with nothing.

        Args:
            ring: Closed (or implicitly closed) claim ring
            owner: Authenticated user id
            name: Optional display name
            started_at: When the walk began
            point_count: Number of recorded points
            path: Walked points, stored for replay

        Returns:
            The committed territory

        Raises:
            Unauthenticated: no owner
            InvalidGeometry, AreaOutOfBounds: candidate cannot be claimed or
                stretches further than ``max_extent_m``
            OverlapConflict: candidate intersects a committed territory
            StorageFailure: database unavailable or contention not resolved
                within the configured attempts
        """
        if not owner:
            raise Unauthenticated()

        polygon = claim_polygon(ring)
        area = self.area_calculator.check_bounds(self.area_calculator.area_m2(ring))
        min_lon, min_lat, max_lon, max_lat = polygon.bounds
        bbox = BoundingBox(min_lat, min_lon, max_lat, max_lon)
        north_m, east_m = bbox.extent_m()
        if max(north_m, east_m) > self.rules.max_extent_m:
            raise InvalidGeometry(
                f"claim spans {max(north_m, east_m):.0f} m, limit is {self.rules.max_extent_m:.0f} m"
            )

        attempts = max(1, self.options.commit_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                with self.region_locks.hold(bbox) as cells:
                    record = self._commit_once(
                        polygon, bbox, cells, owner, name, area, started_at,
                        point_count if point_count is not None else len(ring),
                        path,
                    )
                logger.info(
                    "Territory committed",
                    territory_id=str(record.id),
                    owner=owner,
                    area_m2=round(area),
                    attempt=attempt,
                )
                return record
            except OperationalError as e:
                if attempt == attempts:
                    logger.error("Territory commit failed", owner=owner, error=str(e))
                    raise StorageFailure("territory commit failed", e) from e
                delay = self.options.commit_backoff_s * 2 ** (attempt - 1)
                logger.warning(
                    "Territory commit contended, retrying",
                    owner=owner,
                    attempt=attempt,
                    delay_s=delay,
                )
                time.sleep(delay)
            except SQLAlchemyError as e:
                logger.error("Territory commit failed", owner=owner, error=str(e))
                raise StorageFailure("territory commit failed", e) from e

        raise StorageFailure("territory commit failed")  # pragma: no cover

    def _commit_once(
        self,
        polygon: Polygon,
        bbox: BoundingBox,
        cells,
        owner: str,
        name: Optional[str],
        area: float,
        started_at: Optional[datetime],
        point_count: int,
        path: Optional[Sequence[Coordinate]],
    ) -> TerritoryRecord:
        with self.database.get_session() as session:
            if self.database.is_postgres:
                session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
                for key in sorted(advisory_key(cell) for cell in cells):
                    session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})

            now = self.clock()
            footprints = [self._footprint(t) for t in self._claimed_in(session, bbox, now)]
            conflicts = self.detector.find_conflicts(polygon, footprints)
            if conflicts:
                logger.info("Territory commit refused", owner=owner, conflicts=len(conflicts))
                raise OverlapConflict(len(conflicts))

            territory = Territory(
                id=uuid.uuid4(),
                owner=owner,
                name=name,
                polygon=polygon.wkt,
                path=json.dumps([c.to_dict() for c in path]) if path else None,
                bbox_min_lat=bbox.min_lat,
                bbox_max_lat=bbox.max_lat,
                bbox_min_lon=bbox.min_lon,
                bbox_max_lon=bbox.max_lon,
                area=area,
                point_count=point_count,
                status=TerritoryStatus.ACTIVE,
                started_at=started_at,
                created_at=now,
                last_active_at=now,
            )
            session.add(territory)
            session.flush()
            return self._record(territory, now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_overlaps(
        self,
        ring: Union[Polygon, Sequence[Coordinate]],
        exclude_owner: Optional[str] = None,
    ) -> List[OverlapSummary]:
        """Advisory overlap check; may race with concurrent commits."""
        polygon = ring if isinstance(ring, Polygon) else claim_polygon(ring)
        min_lon, min_lat, max_lon, max_lat = polygon.bounds
        bbox = BoundingBox(min_lat, min_lon, max_lat, max_lon)

        with self.database.get_session() as session:
            footprints = [
                self._footprint(t) for t in self._claimed_in(session, bbox, self.clock())
            ]

        return [
            OverlapSummary(uuid.UUID(f.id), f.owner, f.name, f.area_m2)
            for f in self.detector.find_conflicts(polygon, footprints, exclude_owner)
        ]

    def footprints_in(self, bbox: BoundingBox) -> List[ClaimFootprint]:
        """Non-abandoned territories whose box meets ``bbox``."""
        with self.database.get_session() as session:
            return [
                self._footprint(t) for t in self._claimed_in(session, bbox, self.clock())
            ]

    def visible_territories(
        self,
        bbox: BoundingBox,
        detail_level: float,
        limit: Optional[int] = None,
    ) -> List[VisibleTerritory]:
        """
        Territories for a map viewport, newest first.

        Geometry is simplified for ``detail_level`` and returned as GeoJSON.
        """
        if limit is None:
            limit = self.options.visible_limit
        limit = max(0, min(limit, self.options.visible_limit))
        now = self.clock()

        with self.database.get_session() as session:
            rows = (
                self._claimed_in(session, bbox, now)
                .order_by(Territory.created_at.desc())
                .limit(limit)
                .all()
            )

            result = []
            for territory in rows:
                simplified = self.simplifier.simplify_cached(
                    territory.id, wkt.loads(territory.polygon), detail_level
                )
                result.append(
                    VisibleTerritory(
                        id=territory.id,
                        owner=territory.owner,
                        name=territory.name,
                        area_m2=territory.area,
                        status=self.status_at(territory.last_active_at, now),
                        created_at=territory.created_at,
                        geometry=self.simplifier.to_geojson(simplified),
                    )
                )

        logger.debug("Visible territories", count=len(result), detail_level=detail_level)
        return result

    def territories_owned_by(self, owner: str) -> List[TerritoryRecord]:
        now = self.clock()
        with self.database.get_session() as session:
            rows = (
                session.query(Territory)
                .filter(Territory.owner == owner)
                .order_by(Territory.created_at.desc())
                .all()
            )
            return [self._record(t, now) for t in rows]

    def get(self, territory_id: uuid.UUID) -> Optional[TerritoryRecord]:
        with self.database.get_session() as session:
            territory = session.get(Territory, territory_id)
            return self._record(territory, self.clock()) if territory else None

    # ------------------------------------------------------------------
    # Lifecycle writes
    # ------------------------------------------------------------------

    def touch(self, territory_id: uuid.UUID, owner: Optional[str] = None) -> bool:
        """
        Refresh activity of a territory.

        With ``owner`` given, only that owner's territory is refreshed. Abandoned
        territories are not revived; their ground may already be claimed again.
        """
        now = self.clock()
        with self.database.get_session() as session:
            territory = session.get(Territory, territory_id)
            if territory is None:
                return False
            if owner is not None and territory.owner != owner:
                logger.info(
                    "Activity on foreign territory ignored",
                    territory_id=str(territory_id),
                    owner=owner,
                )
                return False
            if self.status_at(territory.last_active_at, now) == TerritoryStatus.ABANDONED:
                logger.info("Activity on abandoned territory ignored", territory_id=str(territory_id))
                return False
            territory.last_active_at = now
            territory.status = TerritoryStatus.ACTIVE
        return True

    def sweep_lifecycle(self) -> Dict[str, int]:
        """Bring the stored ``status`` column in line with ``last_active_at``."""
        now = self.clock()
        abandoned_cutoff = self._abandoned_cutoff(now)
        inactive_cutoff = self._inactive_cutoff(now)

        with self.database.get_session() as session:
            abandoned = (
                session.query(Territory)
                .filter(
                    Territory.last_active_at < abandoned_cutoff,
                    Territory.status != TerritoryStatus.ABANDONED,
                )
                .update({Territory.status: TerritoryStatus.ABANDONED}, synchronize_session=False)
            )
            inactive = (
                session.query(Territory)
                .filter(
                    Territory.last_active_at >= abandoned_cutoff,
                    Territory.last_active_at < inactive_cutoff,
                    Territory.status != TerritoryStatus.INACTIVE,
                )
                .update({Territory.status: TerritoryStatus.INACTIVE}, synchronize_session=False)
            )
            active = (
                session.query(Territory)
                .filter(
                    Territory.last_active_at >= inactive_cutoff,
                    Territory.status != TerritoryStatus.ACTIVE,
                )
                .update({Territory.status: TerritoryStatus.ACTIVE}, synchronize_session=False)
            )

        counts = {
            TerritoryStatus.ABANDONED: abandoned,
            TerritoryStatus.INACTIVE: inactive,
            TerritoryStatus.ACTIVE: active,
        }
        logger.info("Territory lifecycle sweep", **counts)
        return counts

    def delete_territory(self, territory_id: uuid.UUID, owner: str) -> bool:
        """Delete one of ``owner``'s territories. Other owners' rows are untouched."""
        with self.database.get_session() as session:
            deleted = (
                session.query(Territory)
                .filter(Territory.id == territory_id, Territory.owner == owner)
                .delete(synchronize_session=False)
            )
        if deleted:
            self.simplifier.invalidate(territory_id)
            logger.info("Territory deleted", territory_id=str(territory_id), owner=owner)
        return bool(deleted)
