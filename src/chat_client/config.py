from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    WS_URL: str = "ws://localhost:8080/ws/chat"
    ACCESS_TOKEN: str = ""

    WS_HEARTBEAT_SECONDS: float = 30.0
    CONNECT_TIMEOUT: float = 10.0
    AUTH_TIMEOUT: float = 10.0

    RECONNECT_BASE_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 30.0
    RECONNECT_JITTER: float = 0.2
    RECONNECT_MAX_ATTEMPTS: int | None = None

    TYPING_DEBOUNCE_SECONDS: float = 1.0
    TYPING_EXPIRY_SECONDS: float = 5.0

    PENDING_MATCH_WINDOW_SECONDS: float = 30.0
    PENDING_CLOCK_SKEW_SECONDS: float = 2.0
    PENDING_TIMEOUT_SECONDS: float = 15.0

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
