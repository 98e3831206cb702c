from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "LMS Notifier"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"
    TIMEZONE: str = "Asia/Karachi"

    # Database
    DATABASE_URL: str = "sqlite:///./lms_notifier.db"
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_AUTO_CREATE: bool = True

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Notification dispatcher
    DISPATCH_AUTOSTART: bool = True
    DISPATCH_INTERVAL_SECONDS: float = 300
    DISPATCH_BATCH_SIZE: int = 50
    DISPATCH_MESSAGE_DELAY_SECONDS: float = 2
    DISPATCH_MAX_ATTEMPTS: int = 3
    DISPATCH_SEND_TIMEOUT_SECONDS: float = 30
    DISPATCH_DRAIN_TIMEOUT_SECONDS: float = 120

    # Collection runs
    EXTRACTION_PROVIDER: Optional[str] = None
    COLLECTION_COOLDOWN_SECONDS: float = 60
    COLLECTION_STAGE_TIMEOUT_SECONDS: float = 120
    COLLECTION_HORIZON_DAYS: int = 7
    COLLECTION_CRON_HOUR: int = 8
    COLLECTION_CRON_MINUTE: int = 0
    CHANNEL_RECHECK_SECONDS: float = 30

    # Delivery channel
    DELIVERY_CHANNEL: str = "bridge"
    BRIDGE_BASE_URL: str = "http://localhost:3001"
    BRIDGE_TIMEOUT_SECONDS: float = 30
    LINE_CHANNEL_ACCESS_TOKEN: str = ""

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("DELIVERY_CHANNEL", mode="before")
    def normalize_delivery_channel(cls, v: str) -> str:
        value = (v or "").strip().lower()
        if value not in ("bridge", "line"):
            raise ValueError(f"Unsupported delivery channel: {v}")
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
