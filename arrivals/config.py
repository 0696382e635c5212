# arrivals/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

# Shapes are considered fresh for 24 hours
SHAPES_MAX_AGE_MS = 24 * 60 * 60 * 1000

# Vehicles farther than this from their shape are off-route (meters)
OFF_ROUTE_THRESHOLD_M = 50.0


class Settings(BaseSettings):
    # --- Shapes API ---
    SHAPES_API_BASE_URL: str = "https://api.tranzy.ai/v1"
    SHAPES_API_PATH: str = "/opendata/shapes"
    SHAPES_API_KEY: str | None = None
    AGENCY_ID: str | None = None
    SHAPES_HTTP_TIMEOUT: float = 30.0

    # --- Shape cache ---
    SHAPES_MAX_AGE_MS: int = SHAPES_MAX_AGE_MS
    SHAPES_RETRY_ATTEMPTS: int = 3
    SHAPES_RETRY_BASE_DELAY_S: float = 0.1

    # --- Snapshot persistence ---
    SNAPSHOT_DIR: str = "data/cache"
    SNAPSHOT_KEY: str = "shape-store"
    SNAPSHOT_COMPRESS: bool = True

    # --- Arrival estimation ---
    OFF_ROUTE_THRESHOLD_M: float = OFF_ROUTE_THRESHOLD_M
    AVERAGE_SPEED_KMH: float = 18.0
    DWELL_TIME_S: int = 30
    AT_STOP_THRESHOLD_M: float = 50.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


settings = Settings()
