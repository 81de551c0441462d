"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.
Both the FastAPI server and the dashboard client read their timings from here.

WHAT IS HAPPENING HERE:
Every timing that governs real-time delivery lives in one place: the heartbeat
interval on the server, and the reconnect/fallback windows on the client.
Any field can be overridden from the environment or a `.env` file, e.g.
`FALLBACK_TIMEOUT_S=2 python -m disaster_sync.runner dashboard`.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8080"

    # Endpoints the dashboard client may talk to
    PRIMARY_API_URL: str = "http://127.0.0.1:8000"
    FALLBACK_API_URL: str = "http://localhost:3000"
    DEFAULT_USER_ID: str = "netrunnerX"
    REQUEST_TIMEOUT_S: float = 10.0

    # Persistent connection
    WS_HEARTBEAT_INTERVAL_S: float = 30.0
    WS_SEND_QUEUE_SIZE: int = 256
    RECONNECT_ATTEMPTS: int = 3
    RECONNECT_DELAY_S: float = 1.0
    FALLBACK_TIMEOUT_S: float = 8.0

    # Dashboard notifications
    NOTIFICATION_LIFETIME_S: float = 5.0
    ALERT_HISTORY_SIZE: int = 50
    POLL_INTERVAL_S: float = 30.0

    # Rate limiting (sliding window per client IP)
    RATE_LIMIT_WINDOW_S: float = 900.0
    RATE_LIMIT_MAX_REQUESTS: int = 100

    # Feeds
    CACHE_TTL_S: float = 3600.0
    SOCIAL_CACHE_TTL_S: float = 1800.0
    FEED_REFRESH_INTERVAL_S: float = 300.0
    FEED_REFRESH_LIMIT: int = 10
    INITIAL_FETCH_DELAY_S: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
