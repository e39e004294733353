"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/push_delivery"
    database_echo: bool = False

    # Redis (Dramatiq broker)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Trigger endpoint auth (shared with the internal scheduler)
    scheduler_secret: str = ""

    # Application
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str = "logs/push_delivery.log"
    http_host: str = "0.0.0.0"
    http_port: int = Field(
        default=8080, ge=1, le=65535, description="Trigger/health HTTP port"
    )

    # Queue processing
    queue_batch_size: int = Field(
        default=100, gt=0, le=1000,
        description="Max pending items fetched per cycle"
    )
    queue_sweep_limit: int = Field(
        default=500, gt=0,
        description="Max failed items requeued per cycle"
    )
    queue_concurrency: int = Field(
        default=8, gt=0, le=64,
        description="Concurrent user-group dispatches per cycle"
    )
    queue_stale_claim_minutes: int = Field(
        default=10, gt=0,
        description="In-flight items older than this are returned to pending"
    )
    queue_interval_minutes: int = Field(
        default=2, gt=0,
        description="Scheduler cadence for processing cycles"
    )
    queue_lookup_timeout_seconds: float = Field(
        default=10.0, gt=0,
        description="Timeout for token and preference lookups"
    )

    # Retry policy: 5min, 15min, 45min, ... capped at 6h
    retry_base_delay_seconds: int = Field(default=300, gt=0)
    retry_multiplier: float = Field(default=3.0, gt=1.0)
    retry_max_delay_seconds: int = Field(default=6 * 3600, gt=0)
    default_max_retries: int = Field(default=3, ge=1, le=20)

    # Push gateway (Expo)
    push_gateway_url: str = "https://exp.host/--/api/v2/push/send"
    push_gateway_access_token: str | None = None
    push_gateway_timeout_seconds: float = Field(default=10.0, gt=0)
    push_gateway_max_batch_size: int = Field(default=100, gt=0, le=100)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode='after')
    def validate_retry_policy(self) -> 'Settings':
        """Backoff cap must not be below the base delay."""
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                'RETRY_MAX_DELAY_SECONDS must be >= RETRY_BASE_DELAY_SECONDS'
            )
        return self

    @model_validator(mode='after')
    def validate_production(self) -> 'Settings':
        """Validate production-specific requirements."""
        if self.environment == 'production':
            if self.debug:
                raise ValueError(
                    'DEBUG must be False in production environment. '
                    'Set DEBUG=false in your .env file.'
                )

            if not self.scheduler_secret or len(self.scheduler_secret) < 32:
                raise ValueError(
                    'SCHEDULER_SECRET must be at least 32 characters in '
                    'production. Generate one with: openssl rand -hex 32'
                )

            if not self.push_gateway_access_token:
                logger.warning(
                    'PUSH_GATEWAY_ACCESS_TOKEN is not set. '
                    'Expo push security is disabled for this project.'
                )

        return self

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(
            ('postgresql://', 'postgresql+asyncpg://', 'sqlite+aiosqlite://')
        ):
            raise ValueError(
                'DATABASE_URL must start with postgresql://, '
                'postgresql+asyncpg:// or sqlite+aiosqlite://'
            )
        if v.startswith('postgresql://'):
            # Async engine needs the asyncpg driver
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        level = v.upper()
        if level not in (
            'TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL'
        ):
            raise ValueError(f'Invalid LOG_LEVEL: {v}')
        return level


# Global settings instance
settings = Settings()
