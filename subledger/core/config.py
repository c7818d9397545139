from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    internal_api_allowlist: str = Field(
        default="127.0.0.1/32,::1/128",
        alias="INTERNAL_API_ALLOWLIST",
    )
    internal_api_trusted_proxies: str = Field(default="", alias="INTERNAL_API_TRUSTED_PROXIES")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(alias="REDIS_URL")

    celery_broker_url: str = Field(alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(alias="CELERY_RESULT_BACKEND")

    plans_path: str = Field(default="plans/subscriptions.json", alias="PLANS_PATH")
    default_balance: Decimal = Field(default=Decimal("500"), ge=0, alias="DEFAULT_BALANCE")
    currency_label: str = Field(default="VV", alias="CURRENCY_LABEL")
    display_timezone: str = Field(default="Asia/Kolkata", alias="DISPLAY_TIMEZONE")

    discord_bot_token: str = Field(default="", alias="DISCORD_BOT_TOKEN")
    discord_guild_id: str = Field(default="", alias="DISCORD_GUILD_ID")
    discord_purchase_channel_id: str = Field(default="", alias="DISCORD_PURCHASE_CHANNEL_ID")
    discord_transaction_channel_id: str = Field(default="", alias="DISCORD_TRANSACTION_CHANNEL_ID")
    discord_expiry_channel_id: str = Field(default="", alias="DISCORD_EXPIRY_CHANNEL_ID")
    discord_warning_channel_id: str = Field(default="", alias="DISCORD_WARNING_CHANNEL_ID")
    discord_api_base_url: str = Field(
        default="https://discord.com/api/v10",
        alias="DISCORD_API_BASE_URL",
    )
    discord_request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        alias="DISCORD_REQUEST_TIMEOUT_SECONDS",
    )
    presence_nickname: str = Field(default="Virelia", alias="PRESENCE_NICKNAME")

    expiry_scheduler_backend: str = Field(default="inprocess", alias="EXPIRY_SCHEDULER_BACKEND")
    expiry_check_interval_seconds: int = Field(
        default=21600,
        ge=60,
        alias="EXPIRY_CHECK_INTERVAL_SECONDS",
    )
    recovery_delay_seconds: float = Field(default=10.0, ge=0, alias="RECOVERY_DELAY_SECONDS")
    sweep_batch_size: int = Field(default=500, ge=1, alias="SWEEP_BATCH_SIZE")
    warning_dispatch_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        alias="WARNING_DISPATCH_DELAY_SECONDS",
    )
    expired_dispatch_delay_seconds: float = Field(
        default=1.5,
        ge=0,
        alias="EXPIRED_DISPATCH_DELAY_SECONDS",
    )
    outbox_max_attempts: int = Field(default=3, ge=1, alias="OUTBOX_MAX_ATTEMPTS")
    outbox_retry_delay_seconds: float = Field(default=2.0, ge=0, alias="OUTBOX_RETRY_DELAY_SECONDS")
    transaction_retention_seconds: float = Field(
        default=5.0,
        ge=0,
        alias="TRANSACTION_RETENTION_SECONDS",
    )

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
