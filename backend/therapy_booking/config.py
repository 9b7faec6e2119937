# backend/therapy_booking/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/therapy_booking.db"
    redis_url: str = "redis://localhost:6379/0"

    # Google OAuth client used to refresh psychologists' calendar tokens
    google_client_id: str = ""
    google_client_secret: str = ""
    google_token_uri: str = "https://oauth2.googleapis.com/token"

    # Fixed platform calendar: slot times and dates are interpreted here
    local_timezone: str = "Asia/Kolkata"

    calendar_sync_interval_minutes: int = 15
    calendar_sync_days: int = 30
    calendar_sync_cooldown_minutes: int = 5
    calendar_sync_concurrency: int = 3
    calendar_sync_batch_pause_seconds: float = 1.0
    calendar_sync_startup_delay_seconds: float = 5.0

    # Titles of events this platform writes into psychologists' calendars
    system_event_markers: list[str] = ["LittleMinds", "Little Care", "Kuttikal"]

    default_availability_days: int = 21

    # Reservation requests give up after this many seconds (504)
    request_timeout_seconds: float = 10.0
    enable_background_jobs: bool = True

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative SQLite paths are resolved against the repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
