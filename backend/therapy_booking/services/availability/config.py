# backend/therapy_booking/services/availability/config.py
"""
Booking configuration for the availability engine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...config import settings


HOLIDAY_KEYWORDS = ("holiday", "festival", "celebration", "observance")


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for the availability engine.

    Attributes:
        slot_duration_minutes: Fixed length of every bookable slot
        local_timezone: IANA name of the platform's calendar
        holiday_keywords: Title substrings of events that never block
        system_event_markers: Title substrings of events this platform created
        default_day_start_hour: First default slot start (inclusive)
        default_day_end_hour: Default working day end (exclusive)
        horizon_days: How many days ahead default availability is kept
    """
    slot_duration_minutes: int = 60
    local_timezone: str = "Asia/Kolkata"
    holiday_keywords: tuple[str, ...] = HOLIDAY_KEYWORDS
    system_event_markers: tuple[str, ...] = field(default_factory=tuple)
    default_day_start_hour: int = 8
    default_day_end_hour: int = 22
    horizon_days: int = 21

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_duration_minutes <= 0:
            raise ValueError(
                f"slot_duration_minutes must be positive, got {self.slot_duration_minutes}"
            )
        if not 0 <= self.default_day_start_hour < self.default_day_end_hour <= 24:
            raise ValueError("default working day must satisfy 0 <= start < end <= 24")
        try:
            ZoneInfo(self.local_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.local_timezone}")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.local_timezone)

    @property
    def slot_duration(self) -> timedelta:
        return timedelta(minutes=self.slot_duration_minutes)

    def day_start(self, target_date: date) -> datetime:
        """Local midnight that opens target_date."""
        return datetime.combine(target_date, time.min, tzinfo=self.tz)

    def slot_bounds(self, target_date: date, canonical_time: str) -> tuple[datetime, datetime]:
        """Aware (start, end) of the slot starting at "HH:MM" on target_date."""
        hour, minute = (int(part) for part in canonical_time.split(":"))
        start = datetime.combine(target_date, time(hour, minute), tzinfo=self.tz)
        return start, start + self.slot_duration

    def today(self, now: datetime | None = None) -> date:
        """Current date on the platform calendar."""
        now = now or datetime.now(self.tz)
        if now.tzinfo is None:
            return now.date()
        return now.astimezone(self.tz).date()


@lru_cache
def get_booking_config() -> BookingConfig:
    """
    Get booking configuration (singleton), built from application settings.
    """
    return BookingConfig(
        local_timezone=settings.local_timezone,
        system_event_markers=tuple(settings.system_event_markers),
        horizon_days=settings.default_availability_days,
    )
