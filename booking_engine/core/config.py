from pathlib import Path

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

    # JWT (tokens are issued by the account service; we only verify them)
    secret_key: str
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Shared secret for the periodic reminder trigger. Empty rejects every call.
    cron_secret: str = ""

    # Reminder dispatch
    reminder_offsets: dict[str, int] = {"24h": 24 * 60, "1h": 60, "15m": 15}
    reminder_sweep_period_minutes: int = 5
    reminder_max_concurrency: int = 5
    reminder_sweep_budget_seconds: float = 240.0
    # Run the sweep from the app itself instead of an external scheduler
    reminder_loop_enabled: bool = False

    # Booking defaults used when a booking page does not set them
    default_booking_window_days: int = 60
    default_minimum_notice_minutes: int = 0

    # Env
    env: str = "development"

    # Email (SMTP). Leave smtp_host empty to disable sending.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_timeout_seconds: float = 20.0
    from_email: str = ""
    from_name: str = "Bookings"
    site_name: str = "Bookings"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)


settings = Settings()
