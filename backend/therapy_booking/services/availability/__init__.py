# backend/therapy_booking/services/availability/__init__.py
"""
Availability engine.

Free slots = stored candidates − active bookings − recurring blocks
             − blocking calendar busy intervals
"""

from .config import BookingConfig, get_booking_config
from .time_normalizer import normalize_time, try_normalize_time
from .recurring import is_blocked, filter_slots
from .busy_intervals import BusyInterval, BusyResolution, resolve_busy_intervals
from .conflicts import BookingConflictChecker
from .records import AvailabilityStore
from .materializer import (
    DayAvailability,
    compute_free_slots,
    compute_free_slots_range,
    fetch_busy_intervals,
)

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "normalize_time",
    "try_normalize_time",
    "is_blocked",
    "filter_slots",
    "BusyInterval",
    "BusyResolution",
    "resolve_busy_intervals",
    "BookingConflictChecker",
    "AvailabilityStore",
    "DayAvailability",
    "compute_free_slots",
    "compute_free_slots_range",
    "fetch_busy_intervals",
]
