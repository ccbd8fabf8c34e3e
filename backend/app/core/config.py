from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "BountyMessaging"
    PROJECT_VERSION: str = "1.0.0"
    DESCRIPTION: str = "Realtime messaging and push notifications for the bounty platform"

    DATABASE_URI: str = "sqlite:///./app.db"

    # Endpoints
    API_V1_STR: str = "/api/v1"

    # Messages
    MESSAGE_MAX_LENGTH: int = 2000

    # Realtime fan-out
    REALTIME_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CHANNEL_PREFIX: str = "thread:"
    REDIS_PRESENCE_PREFIX: str = "presence:"
    REALTIME_QUEUE_SIZE: int = 256
    REALTIME_GAP_TIMEOUT_SECONDS: float = 2.0
    # Presence entries expire unless a live subscription refreshes them
    REALTIME_PRESENCE_TTL_SECONDS: int = 30

    # Web Push
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:support@bounty-platform.local"
    PUSH_TTL_SECONDS: int = 60 * 60 * 24
    PUSH_TIMEOUT_SECONDS: float = 10.0
    PUSH_BODY_MAX_LENGTH: int = 100
    PUSH_ICON: str = "/icon-192x192.png"
    PUSH_SUBSCRIPTION_RETENTION_DAYS: int = 30

    # Scheduled maintenance
    CRON_SECRET: str = ""

    # CORS Settings
    ALLOWED_ORIGINS: str = "https://localhost,https://127.0.0.1"
    ALLOW_CREDENTIALS: bool = True
    ALLOW_METHODS: list[str] = ["*"]
    ALLOW_HEADERS: list[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None


settings = Settings()
