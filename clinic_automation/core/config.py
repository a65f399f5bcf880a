"""Application configuration with environment variables."""

from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.01.00"

    # Tenant store used by the default session factory.
    # Tenant resolution/routing happens upstream; each process points at one store.
    DATABASE_URL: str = "sqlite:///./clinic_automation.db"

    # State machine
    CONFIRMATION_LEAD_HOURS: int = 24
    CLINIC_TIMEZONE: str = "UTC"

    # Retry bookkeeping
    ACTION_MAX_RETRIES: int = 3
    JOB_MAX_RETRIES: int = 3
    JOB_RETRY_DELAY_MINUTES: int = 5  # Fixed delay, no backoff growth
    JOB_RETENTION_DAYS: int = 30

    # Worker
    WORKER_POLL_INTERVAL: int = 60
    WORKER_BATCH_SIZE: int = 50

    # Message template context
    FRONTEND_URL: str = "http://localhost:3000"
    CLINIC_NAME: str = "MedicalPro"
    DEFAULT_LANGUAGE: str = "es"
    CONFIRMATION_TOKEN_TTL_HOURS: int = 72
    CONSENT_REQUEST_TTL_DAYS: int = 7

    # Messaging channels
    RESEND_API_KEY: str = ""  # Empty = dry run (log only)
    EMAIL_FROM: str = "noreply@example.com"
    WHATSAPP_ENABLED: bool = False
    SMS_ENABLED: bool = False

    @property
    def job_retry_delay(self) -> timedelta:
        return timedelta(minutes=self.JOB_RETRY_DELAY_MINUTES)

    @property
    def confirmation_token_ttl(self) -> timedelta:
        return timedelta(hours=self.CONFIRMATION_TOKEN_TTL_HOURS)

    @property
    def consent_request_ttl(self) -> timedelta:
        return timedelta(days=self.CONSENT_REQUEST_TTL_DAYS)

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
