"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./rankitpro.db"

    # Email (SendGrid)
    sendgrid_api_key: str = ""
    review_from_email: str = "reviews@rankitpro.com"
    review_from_name: str = "Rank It Pro"

    # SMS (Aircall)
    aircall_api_id: str = ""
    aircall_api_token: str = ""
    aircall_number_id: str = ""

    # Frontend (review links)
    frontend_url: str = "https://rankitpro.com"

    # Internal cron endpoint auth
    internal_token: str = "change-me-in-production"

    # Review drip
    drip_poll_interval_minutes: int = 15
    drip_claim_lease_minutes: int = 15
    drip_retry_base_minutes: int = 15
    drip_retry_max_minutes: int = 360
    drip_loop_enabled: bool = True

    # CORS
    cors_origins: str = "http://localhost:3000"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin.
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
