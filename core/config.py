"""
TELECONSULT+ Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "TELECONSULT+"
    DEBUG: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # WebSocket
    WS_MAX_CONNECTIONS: int = 200
    WS_HEARTBEAT_INTERVAL: int = 30

    # Session tracking
    SESSION_RETENTION_HOURS: int = 24
    SESSION_SWEEP_INTERVAL: int = 60 * 60  # seconds

    # Video provider (LiveKit)
    LIVEKIT_URL: str = ""
    LIVEKIT_API_KEY: str = ""
    LIVEKIT_API_SECRET: str = ""
    VIDEO_TOKEN_TTL_MINUTES: int = 240
    VIDEO_ROOM_MAX_PARTICIPANTS: int = 2

    # WhatsApp (WHAPI gateway)
    WHAPI_TOKEN: str = ""
    WHAPI_URL: str = "https://gate.whapi.cloud/messages/text"

    # Completion reports
    REPORT_RECIPIENT: str = ""
    REPORT_TIMEZONE: str = "America/Bogota"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
