from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Shared secret the external scheduler sends in X-Cron-Secret
    cron_secret: str = ""

    # Phone numbers without an international prefix get this calling code
    default_country_code: str = "54"

    # WhatsApp Cloud API
    whatsapp_api_base_url: str = "https://graph.facebook.com/v18.0"
    whatsapp_language_code: str = "es"
    http_timeout_seconds: float = 10.0

    # Slot/appointment business rules
    suggest_limit: int = 3
    suggest_days_to_scan: int = 14

    # Waitlist backfill job
    waitlist_lookback_minutes: int = 5
    waitlist_horizon_hours: int = 48
    waitlist_batch_size: int = 10
    waitlist_poll_interval_minutes: int = 3

    # Reminder job: tolerance must stay wider than the polling interval
    reminder_tolerance_minutes: int = 20
    reminder_poll_interval_minutes: int = 15

    # Run the jobs inside the API process instead of via the cron routes
    jobs_enabled: bool = False

    # Tenant and integration lookups
    cache_ttl_seconds: int = 60
    cache_max_entries: int = 1024

    # Env
    env: str = "development"

    @model_validator(mode="after")
    def _check_reminder_window(self) -> "Settings":
        if self.reminder_tolerance_minutes <= self.reminder_poll_interval_minutes:
            raise ValueError(
                "reminder_tolerance_minutes must be greater than reminder_poll_interval_minutes "
                f"(got {self.reminder_tolerance_minutes} <= {self.reminder_poll_interval_minutes})"
            )
        if self.waitlist_lookback_minutes <= self.waitlist_poll_interval_minutes:
            raise ValueError("waitlist_lookback_minutes must be greater than waitlist_poll_interval_minutes")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
