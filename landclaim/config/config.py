from pathlib import Path
from typing import Optional

from dotenv import dotenv_values
from pydantic import Field
from pydantic_settings import BaseSettings

import os

# Explicitly load .env for local/dev environments only if values are missing from the environment
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_file = BASE_DIR / ".env"

if env_file.exists():
    file_env = dotenv_values(env_file)
    missing_keys = {k: v for k, v in file_env.items() if k not in os.environ and v is not None}
    for k, v in missing_keys.items():
        os.environ[k] = v


class Settings(BaseSettings):
    """Application settings pulled from environment variables."""

    # Database Configuration
    db_host: str = Field(default="localhost", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_name: str = Field(default="landclaim", description="Database name")
    db_user: str = Field(default="postgres", description="Database user")
    db_password: str = Field(default="password", description="Database password")
    db_url: Optional[str] = Field(
        default=None, description="Full SQLAlchemy URL, overrides the db_* parts"
    )

    @property
    def database_url(self) -> str:
        """Construct full database URL."""
        if self.db_url:
            return self.db_url
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    debug: bool = Field(default=False, description="Enable debug mode")
    allowed_origins: str = Field(default="http://localhost:3000", description="CORS allowed origins")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (e.g., plain, json)")

    # Path validation
    max_speed_kmh: float = Field(default=15.0, description="Speed ceiling between consecutive fixes")
    teleport_distance_m: float = Field(default=100.0, description="Jump distance treated as a GPS snap")
    teleport_window_s: float = Field(default=5.0, description="Time window for the jump test")
    stale_gap_s: float = Field(default=60.0, description="Gap after which a path loses continuity")
    continuity_policy: str = Field(default="restart", description="restart or abandon on a stale gap")
    min_point_spacing_m: float = Field(default=5.0, description="Fixes closer than this are not recorded")
    path_inactivity_timeout_s: float = Field(default=600.0, description="Idle time before a path is abandoned")

    # Closure and area
    closure_distance_m: float = Field(default=30.0, description="Max start/end gap for a loop")
    min_closure_points: int = Field(default=3, description="Minimum points for a loop")
    min_area_m2: float = Field(default=500.0, description="Smallest claimable area")
    max_area_m2: float = Field(default=100000.0, description="Largest claimable area")
    max_extent_m: float = Field(default=5000.0, description="Longest side of a claim bounding box")
    meters_per_degree: float = Field(default=111320.0, description="Planar scale of the area formula")

    # Territory store
    visible_limit: int = Field(default=100, description="Max territories per map query")
    inactive_after_days: int = Field(default=30, description="Days without activity before inactive")
    abandoned_after_days: int = Field(default=90, description="Days without activity before abandoned")
    commit_max_attempts: int = Field(default=3, description="Attempts for a contended commit")
    commit_backoff_s: float = Field(default=0.05, description="Initial backoff between commit attempts")
    region_lock_cell_deg: float = Field(default=0.01, description="Grid size of commit region locks")
    region_lock_timeout_s: float = Field(default=5.0, description="Max wait for a region lock")
    region_lock_stripes: int = Field(default=1024, description="Size of the fixed commit lock table")
    simplify_cache_size: int = Field(default=4096, description="Cached simplified geometries")
    housekeeping_interval_s: float = Field(default=60.0, description="Seconds between idle-path and lifecycle sweeps")

    # Player density
    online_window_s: float = Field(default=300.0, description="Heartbeat age still counted as online")
    offline_backdate_s: float = Field(default=600.0, description="How far mark-offline back-dates last_seen")
    density_radius_m: float = Field(default=1000.0, description="Default density query radius")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Instantiate singleton settings object
settings = Settings()
