"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite:///./pipeline_automation.db"

    # Internal scheduled endpoints (cron jobs) and automation admin routes
    INTERNAL_SECRET: str = ""

    # Outbound messaging provider (SMS / email / document packets)
    # Leave empty to log sends instead of delivering them (dry run)
    MESSAGING_WEBHOOK_URL: str = ""
    MESSAGING_WEBHOOK_TOKEN: str = ""
    MESSAGING_TIMEOUT_SECONDS: float = 10.0

    # Message defaults
    COMPANY_NAME: str = "Tremendous Care"
    DEFAULT_EMAIL_SUBJECT: str = "Message from {{company_name}}"

    # Scheduler pickup
    SEQUENCE_SWEEP_BATCH_SIZE: int = 100

    # Background trigger queue (0 = unbounded)
    AUTOMATION_QUEUE_MAXSIZE: int = 1000

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def messaging_enabled(self) -> bool:
        """Outbound messages are delivered only when a provider webhook is set."""
        return bool(self.MESSAGING_WEBHOOK_URL.strip())

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
