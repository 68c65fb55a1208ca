from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite+aiosqlite:///./rewardly.db"
    database_echo: bool = False
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "rewardly-default"
    secret_key: str = "change-me"

    # Internal API security (sweeps, payment callbacks)
    internal_api_key: str = ""

    # Ledger / redemption core
    redemption_ttl_seconds: int = 5 * 60
    transaction_retry_attempts: int = 5
    transaction_retry_backoff_seconds: float = 0.05

    # Scan gating
    scan_cooldown_seconds: int = 10
    default_geofence_radius_meters: float = 100.0
    free_tier_monthly_scan_limit: int = 10

    # Seller configuration cache
    seller_config_cache_ttl_seconds: int = 60

    # Daily perks
    offer_code_prefix: str = "RED-GRAB-"
    offer_code_length: int = 6
    offer_timezone: str = "Asia/Kolkata"

    # Expiry sweep
    loyalty_expiry_worker_enabled: bool = False
    loyalty_expiry_interval_seconds: int = 24 * 60 * 60
    loyalty_expiry_task_queue: str = "loyalty-expiry"
    loyalty_expiry_batch_size: int = 500

    # Push notifications
    push_backend: Literal["expo", "memory", "disabled"] = "disabled"
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str | None = None
    push_timeout_seconds: float = 10.0
    push_android_channel: str = "orders"

    # CORS for the mobile/web clients
    cors_allowed_origins: list[str] = Field(default_factory=list)

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _parse_origin_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
