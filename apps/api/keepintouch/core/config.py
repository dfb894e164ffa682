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
    DATABASE_URL: str = "sqlite:///./keepintouch.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Keep-in-touch scheduling
    # Calendar dates (scheduled_date, "today", overdue) are computed in this zone
    KIT_TIMEZONE: str = "UTC"
    KIT_DASHBOARD_UPCOMING_LIMIT: int = 5
    # Assignee for field_staff steps; empty falls back to the subscription owner
    KIT_FIELD_STAFF_ASSIGNEE: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
