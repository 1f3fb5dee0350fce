"""
REHABTRACK Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "REHABTRACK"
    DEBUG: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://localhost:8080"]

    # WebSocket
    WS_MAX_CONNECTIONS: int = 100

    # Sessions
    MAX_ACTIVE_SESSIONS: int = 200

    # Rep detection (read once per detector, never changed mid-session)
    SMOOTHING_ALPHA: float = 0.3
    MIN_REP_DURATION_MS: int = 300
    MIN_LANDMARK_VISIBILITY: float = 0.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
