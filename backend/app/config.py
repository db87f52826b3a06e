"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Production_Orders"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str = "sqlite:///./production_orders.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (monthly statistics cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    STATISTICS_CACHE_ENABLED: bool = True
    STATISTICS_CACHE_PREFIX: str = "monthly_stats"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    CELERY_TIMEZONE: str = "UTC"

    # Periodic sweeps (server local hours, comma-separated where plural)
    EXPIRED_TASKS_SWEEP_HOUR: int = 2
    URGENT_DEADLINE_SWEEP_HOURS: str = "9,17"
    URGENT_DEADLINE_WINDOW_MIN_DAYS: int = 1
    URGENT_DEADLINE_WINDOW_MAX_DAYS: int = 2

    # JWT
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Mail. When SMTP_HOST is unset notifications are only logged.
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    MAIL_FROM: str = "no-reply@production-orders.local"

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Order number assignment retries on unique (kind, order_number) violations
    ORDER_NUMBER_MAX_RETRIES: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def urgent_deadline_sweep_hours(self) -> list[int]:
        return [int(hour.strip()) for hour in self.URGENT_DEADLINE_SWEEP_HOURS.split(",") if hour.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
