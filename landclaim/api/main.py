"""FastAPI main application."""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text

from ..config import settings
from ..core.density import DensityEstimator, DensityOptions
from ..core.errors import (
    ClaimValidationError,
    InvalidPathState,
    LandClaimError,
    OverlapConflict,
    StorageFailure,
    Unauthenticated,
)
from ..core.overlap import assess_proximity
from ..core.path_recorder import PathRecorder
from ..core.rules import ClaimRules
from ..core.validator import LocationSample
from ..db.connection import db
from ..db.heartbeats import HeartbeatRepository
from ..db.store import StoreOptions, TerritoryRecord, TerritoryStore
from ..utils.geodesy import BoundingBox, Coordinate
from ..utils.timeutil import as_naive_utc
from .sessions import PathSessionRegistry

# Configure logging
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Radius around the walker searched for the proximity advisory
PROXIMITY_SEARCH_M = 250.0

# Initialize FastAPI app
app = FastAPI(
    title="Land Claim API",
    description="Walk-to-claim territory validation and spatial queries",
    version="0.1.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.allowed_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Engine services
rules = ClaimRules.from_settings(settings)
territory_store = TerritoryStore(db, rules=rules, options=StoreOptions.from_settings(settings))
heartbeat_repository = HeartbeatRepository(
    db,
    online_window_s=settings.online_window_s,
    offline_backdate_s=settings.offline_backdate_s,
)
density_estimator = DensityEstimator(
    heartbeat_repository, options=DensityOptions.from_settings(settings)
)
path_sessions = PathSessionRegistry(rules)


def get_store() -> TerritoryStore:
    return territory_store


def get_heartbeats() -> HeartbeatRepository:
    return heartbeat_repository


def get_density() -> DensityEstimator:
    return density_estimator


def get_sessions() -> PathSessionRegistry:
    return path_sessions


def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity is established upstream and forwarded in ``X-User-Id``."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthenticated()
    return x_user_id.strip()


# Request/Response models
class LatLon(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lon=self.lon)


class SampleRequest(LatLon):
    """One location fix."""

    timestamp: datetime
    accuracy: Optional[float] = Field(None, ge=0, description="Horizontal accuracy in meters")


class ProximityInfo(BaseModel):
    level: str
    distance_m: Optional[float] = None


class SampleResponse(BaseModel):
    action: str
    accepted: bool
    reason: Optional[str] = None
    speed_kmh: Optional[float] = None
    state: str
    point_count: int
    proximity: ProximityInfo


class PathResponse(BaseModel):
    state: str
    point_count: int
    restarts: int
    started_at: Optional[datetime] = None
    area_m2: Optional[float] = None
    closeable: bool = False
    closure_gap_m: Optional[float] = None


class ClosureResponse(BaseModel):
    state: str
    area_m2: float
    point_count: int
    ring: List[LatLon]


class CommitPathRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)


class CommitRequest(BaseModel):
    """Commit a closed polygon directly."""

    polygon: List[LatLon] = Field(..., min_length=3)
    name: Optional[str] = Field(None, max_length=255)


class TerritoryResponse(BaseModel):
    id: str
    owner: str
    name: Optional[str]
    area: float
    status: str
    point_count: Optional[int]
    created_at: datetime
    last_active_at: datetime
    polygon: List[LatLon]


class VisibleTerritoryResponse(BaseModel):
    id: str
    owner: str
    name: Optional[str]
    area: float
    status: str
    created_at: datetime
    geometry: dict


class OverlapRequest(BaseModel):
    polygon: List[LatLon] = Field(..., min_length=3)
    exclude_owner: Optional[str] = None


class OverlapResponse(BaseModel):
    id: str
    owner: str
    name: Optional[str]
    area: float


class HeartbeatRequest(LatLon):
    pass


class DensityResponse(BaseModel):
    nearby_count: int
    tier: str
    suggested_spawn_count: int


def _territory_response(record: TerritoryRecord) -> TerritoryResponse:
    return TerritoryResponse(
        id=str(record.id),
        owner=record.owner,
        name=record.name,
        area=record.area_m2,
        status=record.status,
        point_count=record.point_count,
        created_at=record.created_at,
        last_active_at=record.last_active_at,
        polygon=[LatLon(lat=c.lat, lon=c.lon) for c in record.ring],
    )


def _path_response(recorder: Optional[PathRecorder]) -> PathResponse:
    if recorder is None:
        return PathResponse(state="empty", point_count=0, restarts=0)
    path = recorder.path
    coordinates = path.coordinates
    gap = recorder.closure.closure_gap_m(coordinates) if len(coordinates) >= 2 else None
    return PathResponse(
        state=path.state.value,
        point_count=len(path.points),
        restarts=path.restarts,
        started_at=path.started_at,
        area_m2=path.area_m2,
        closeable=recorder.closure.is_closeable(coordinates),
        closure_gap_m=gap,
    )


def _require_path(sessions: PathSessionRegistry, user: str) -> PathRecorder:
    recorder = sessions.get(user)
    if recorder is None:
        raise HTTPException(status_code=404, detail="No claim in progress")
    return recorder


def _parse_territory_id(territory_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(territory_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Territory not found")


# Error mapping
@app.exception_handler(LandClaimError)
async def land_claim_error_handler(request, exc: LandClaimError):
    if isinstance(exc, Unauthenticated):
        status = 401
    elif isinstance(exc, ClaimValidationError):
        status = 422
    elif isinstance(exc, (OverlapConflict, InvalidPathState)):
        status = 409
    elif isinstance(exc, StorageFailure):
        status = 503
    else:
        status = 400

    body = {"error": exc.code, "message": exc.message}
    if isinstance(exc, OverlapConflict):
        body["conflict_count"] = exc.conflict_count
    return JSONResponse(status_code=status, content=body)


# Housekeeping
def run_housekeeping():
    """Expire idle claim paths and refresh stored territory status."""
    path_sessions.sweep()
    territory_store.sweep_lifecycle()


async def housekeeping_loop(interval_s: float):
    while True:
        await asyncio.sleep(interval_s)
        try:
            await asyncio.to_thread(run_housekeeping)
        except Exception as e:
            logger.error("Housekeeping failed", error=str(e))


_housekeeping_task: Optional[asyncio.Task] = None


# Event handlers
@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    global _housekeeping_task

    logger.info("Starting Land Claim API")
    db.initialize()
    _housekeeping_task = asyncio.create_task(housekeeping_loop(settings.housekeeping_interval_s))
    logger.info("API startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Land Claim API")
    if _housekeeping_task is not None:
        _housekeeping_task.cancel()
    db.dispose()


# API endpoints
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Land Claim API",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    try:
        with db.get_session() as session:
            session.execute(text("SELECT 1"))

        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        raise HTTPException(status_code=503, detail="Service unhealthy")


# Claim recording
@app.post("/claims/samples", response_model=SampleResponse)
def ingest_sample(
    request: SampleRequest,
    user: str = Depends(get_current_user),
    sessions: PathSessionRegistry = Depends(get_sessions),
    store: TerritoryStore = Depends(get_store),
):
    """Feed one location fix into the caller's claim path."""
    recorder = sessions.get_or_start(user)
    sample = LocationSample(
        coordinate=request.to_coordinate(),
        timestamp=as_naive_utc(request.timestamp),
        accuracy=request.accuracy,
    )
    outcome = recorder.append(sample)
    recorder.touch(sessions.clock())

    footprints = [
        footprint
        for bbox in BoundingBox.around(sample.coordinate, PROXIMITY_SEARCH_M).wrapped()
        for footprint in store.footprints_in(bbox)
    ]
    proximity = assess_proximity(recorder.path.coordinates or [sample.coordinate], footprints, user)

    validation = outcome.validation
    return SampleResponse(
        action=outcome.action.value,
        accepted=outcome.accepted,
        reason=validation.reason.value if validation.reason else None,
        speed_kmh=validation.speed_kmh,
        state=recorder.state.value,
        point_count=outcome.point_count,
        proximity=ProximityInfo(level=proximity.level.value, distance_m=proximity.distance_m),
    )


@app.get("/claims/current", response_model=PathResponse)
def current_path(
    user: str = Depends(get_current_user),
    sessions: PathSessionRegistry = Depends(get_sessions),
):
    return _path_response(sessions.get(user))


@app.post("/claims/close", response_model=ClosureResponse)
def close_path(
    user: str = Depends(get_current_user),
    sessions: PathSessionRegistry = Depends(get_sessions),
):
    """Request loop closure of the caller's path."""
    recorder = _require_path(sessions, user)
    recorder.touch(sessions.clock())
    closed = recorder.request_close()
    return ClosureResponse(
        state=recorder.state.value,
        area_m2=closed.area_m2,
        point_count=closed.point_count,
        ring=[LatLon(lat=c.lat, lon=c.lon) for c in closed.ring],
    )


@app.post("/claims/resume", response_model=PathResponse)
def resume_path(
    user: str = Depends(get_current_user),
    sessions: PathSessionRegistry = Depends(get_sessions),
):
    """Reopen a closed path so the user can keep walking."""
    recorder = _require_path(sessions, user)
    recorder.resume()
    recorder.touch(sessions.clock())
    return _path_response(recorder)


@app.post("/claims/commit", response_model=TerritoryResponse, status_code=201)
def commit_path(
    request: CommitPathRequest,
    user: str = Depends(get_current_user),
    sessions: PathSessionRegistry = Depends(get_sessions),
    store: TerritoryStore = Depends(get_store),
):
    """
    Commit the caller's closed path.

    On overlap the path stays closed so the user can adjust or abandon it.
    """
    recorder = _require_path(sessions, user)
    closed = recorder.closed_path()
    try:
        record = store.commit(
            closed.ring,
            user,
            name=request.name,
            started_at=recorder.path.started_at,
            point_count=closed.point_count,
            path=recorder.path.coordinates,
        )
    except ClaimValidationError:
        recorder.mark_rejected()
        sessions.discard(user)
        raise

    recorder.mark_committed(str(record.id))
    sessions.discard(user)
    return _territory_response(record)


@app.delete("/claims/current", response_model=PathResponse)
def cancel_path(
    user: str = Depends(get_current_user),
    sessions: PathSessionRegistry = Depends(get_sessions),
):
    """Abandon the caller's claim attempt. Nothing is written to the store."""
    recorder = _require_path(sessions, user)
    recorder.cancel()
    sessions.discard(user)
    return _path_response(recorder)


# Territories
@app.post("/territories", response_model=TerritoryResponse, status_code=201)
def commit_territory(
    request: CommitRequest,
    user: str = Depends(get_current_user),
    store: TerritoryStore = Depends(get_store),
):
    """Commit a closed polygon for the caller."""
    ring = [p.to_coordinate() for p in request.polygon]
    record = store.commit(ring, user, name=request.name)
    return _territory_response(record)


@app.get("/territories/visible", response_model=List[VisibleTerritoryResponse])
def visible_territories(
    min_lat: float = Query(..., ge=-90, le=90),
    min_lon: float = Query(..., ge=-180, le=180),
    max_lat: float = Query(..., ge=-90, le=90),
    max_lon: float = Query(..., ge=-180, le=180),
    detail_level: float = Query(15.0, description="Map zoom-like detail level"),
    user: str = Depends(get_current_user),
    store: TerritoryStore = Depends(get_store),
):
    """Territories inside a viewport, newest first, with simplified geometry."""
    if min_lat > max_lat or min_lon > max_lon:
        raise HTTPException(status_code=400, detail="Invalid bounding box")

    territories = store.visible_territories(
        BoundingBox(min_lat, min_lon, max_lat, max_lon), detail_level
    )
    return [
        VisibleTerritoryResponse(
            id=str(t.id),
            owner=t.owner,
            name=t.name,
            area=t.area_m2,
            status=t.status,
            created_at=t.created_at,
            geometry=t.geometry,
        )
        for t in territories
    ]


@app.get("/territories/mine", response_model=List[TerritoryResponse])
def my_territories(
    user: str = Depends(get_current_user),
    store: TerritoryStore = Depends(get_store),
):
    return [_territory_response(r) for r in store.territories_owned_by(user)]


@app.post("/territories/overlaps", response_model=List[OverlapResponse])
def find_overlaps(
    request: OverlapRequest,
    user: str = Depends(get_current_user),
    store: TerritoryStore = Depends(get_store),
):
    """Advisory overlap check against committed territories."""
    ring = [p.to_coordinate() for p in request.polygon]
    return [
        OverlapResponse(id=str(o.id), owner=o.owner, name=o.name, area=o.area_m2)
        for o in store.find_overlaps(ring, exclude_owner=request.exclude_owner)
    ]


@app.post("/territories/{territory_id}/activity")
def refresh_activity(
    territory_id: str,
    user: str = Depends(get_current_user),
    store: TerritoryStore = Depends(get_store),
):
    """Activity signal from the owner's building and other territory events."""
    tid = _parse_territory_id(territory_id)
    record = store.get(tid)
    if record is None or record.owner != user:
        raise HTTPException(status_code=404, detail="Territory not found")
    return {"refreshed": store.touch(tid, owner=user)}


@app.delete("/territories/{territory_id}", status_code=204)
def delete_territory(
    territory_id: str,
    user: str = Depends(get_current_user),
    store: TerritoryStore = Depends(get_store),
):
    if not store.delete_territory(_parse_territory_id(territory_id), user):
        raise HTTPException(status_code=404, detail="Territory not found")
    return Response(status_code=204)


# Heartbeats and density
@app.post("/heartbeats")
def report_heartbeat(
    request: HeartbeatRequest,
    user: str = Depends(get_current_user),
    heartbeats: HeartbeatRepository = Depends(get_heartbeats),
):
    """Upsert the caller's position (client sends every ~30 s or ~50 m)."""
    last_seen = heartbeats.report(user, request.to_coordinate())
    return {"last_seen": last_seen}


@app.post("/heartbeats/offline")
def mark_offline(
    user: str = Depends(get_current_user),
    heartbeats: HeartbeatRepository = Depends(get_heartbeats),
):
    return {"offline": heartbeats.mark_offline(user)}


@app.get("/density", response_model=DensityResponse)
def density_suggestion(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_m: Optional[float] = Query(None, gt=0, le=50000),
    user: str = Depends(get_current_user),
    density: DensityEstimator = Depends(get_density),
):
    """Nearby online players and the spawn tier they imply."""
    suggestion = density.suggest(Coordinate(lat=lat, lon=lon), radius_m, excluding_user=user)
    return DensityResponse(
        nearby_count=suggestion.nearby_count,
        tier=suggestion.tier.value,
        suggested_spawn_count=suggestion.suggested_spawn_count,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
