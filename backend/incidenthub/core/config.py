from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./incidenthub.db"
    DATABASE_ECHO: bool = False
    DATABASE_SSL: bool = False

    # Cross-worker fanout relay; local-only delivery when unset
    REDIS_URL: Optional[str] = None
    REDIS_CHANNEL: str = "incidenthub_events"

    # Report image uploads; reports are stored without images when unset
    MINIO_ENDPOINT: Optional[str] = None
    MINIO_ACCESS_KEY: Optional[str] = None
    MINIO_SECRET_KEY: Optional[str] = None
    MINIO_BUCKET: str = "incidenthub-incidents"
    MINIO_SECURE: bool = True
    MINIO_PUBLIC_URL: Optional[str] = None

    SECRET_KEY: str = "changeme"
    ALGORITHM: str = "HS256"

    NEARBY_RADIUS_METERS: float = 10000.0
    FANOUT_QUEUE_SIZE: int = 100
    FANOUT_SEND_TIMEOUT: float = 5.0

    # Report submissions per client address per window (seconds)
    REPORT_RATE_LIMIT: int = 1000
    REPORT_RATE_WINDOW: float = 300.0

    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"
    API_PORT: int = 8000

    class Config:
        env_file = ".env"
        extra = "ignore"
