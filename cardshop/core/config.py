from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",   # ignore unknown keys in .env
        frozen=True,
    )

    DATABASE_URL: str

    JWT_SECRET: str
    JWT_ACCESS_MINUTES: int = 720
    JWT_ALG: str = "HS256"

    # Sweeper auth. Unset means the cron endpoint refuses every call.
    CRON_SECRET: str | None = None

    PENDING_ORDER_TIMEOUT_MS: int = 15 * 60 * 1000
    ORDER_RATE_LIMIT_POINTS: int = 10
    ORDER_QUERY_RATE_LIMIT_POINTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    MAX_PENDING_ORDERS_PER_IP: int = 6
    MAX_ORDER_AMOUNT: Decimal = Decimal("999999.99")
    ORDER_NO_RETRIES: int = 3

    SITE_URL: str = "http://localhost:8000"
    SITE_NAME: str = "Account Mall"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    ALIPAY_APP_ID: str | None = None
    ALIPAY_PRIVATE_KEY: str | None = None
    ALIPAY_PUBLIC_KEY: str | None = None
    ALIPAY_GATEWAY_URL: str = "https://openapi.alipay.com/gateway.do"

    TURNSTILE_SECRET_KEY: str | None = None

    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "Account Mall <no-reply@example.com>"
    SMTP_USE_TLS: bool = True

    LOG_LEVEL: str = "INFO"

    @property
    def pending_order_timeout_seconds(self) -> float:
        return self.PENDING_ORDER_TIMEOUT_MS / 1000.0

    @property
    def alipay_configured(self) -> bool:
        return bool(self.ALIPAY_APP_ID and self.ALIPAY_PRIVATE_KEY and self.ALIPAY_PUBLIC_KEY)


@lru_cache
def get_settings() -> Settings:
    return Settings()
