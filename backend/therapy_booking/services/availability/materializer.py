# backend/therapy_booking/services/availability/materializer.py
"""
Free slots of a psychologist: stored candidates minus everything that takes them.

Per date:
  candidates  = availability.time_slots (normalized, de-duplicated)
  − booked    = active bookings of both kinds
  − recurring = weekly blocks for the weekday
  − busy      = slots overlapping a blocking calendar interval

Read-only: nothing here writes to the database.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from ...errors import CalendarError
from ...models import Psychologists
from .busy_intervals import BusyInterval, blocked_slot_times, day_windows, is_blocking, resolve_busy_intervals
from .config import BookingConfig, get_booking_config
from .conflicts import BookingConflictChecker
from .records import AvailabilityStore, candidate_slots
from .recurring import RecurringRule, is_blocked, load_recurring_rules

logger = logging.getLogger(__name__)


@dataclass
class DayAvailability:
    date: date
    is_available: bool = True
    available_slots: list[str] = field(default_factory=list)
    booked_slots: list[str] = field(default_factory=list)
    recurring_blocked_slots: list[str] = field(default_factory=list)
    busy_slots: list[str] = field(default_factory=list)
    external_events: int = 0

    @property
    def total_slots(self) -> int:
        return (
            len(self.available_slots)
            + len(self.booked_slots)
            + len(self.recurring_blocked_slots)
            + len(self.busy_slots)
        )


def compute_day_availability(
    candidates: list[str],
    target_date: date,
    booked: set[str],
    rules: list[RecurringRule],
    busy_intervals: list[BusyInterval] | None = None,
    config: BookingConfig | None = None,
) -> DayAvailability:
    """
    Split canonical candidates of one date by the reason they are (not) free.

    A slot is attributed to the first matching reason: booking, recurring
    block, calendar.
    """
    config = config or get_booking_config()
    busy_intervals = busy_intervals or []
    busy = blocked_slot_times(candidates, target_date, busy_intervals, config)

    day = DayAvailability(date=target_date)
    for slot_time in candidates:
        if slot_time in booked:
            day.booked_slots.append(slot_time)
        elif is_blocked(rules, target_date, slot_time):
            day.recurring_blocked_slots.append(slot_time)
        elif slot_time in busy:
            day.busy_slots.append(slot_time)
        else:
            day.available_slots.append(slot_time)

    day.external_events = sum(
        1
        for interval in busy_intervals
        if is_blocking(interval, config) and target_date in day_windows(interval, config)
    )
    return day


def compute_free_slots(
    db: Session,
    psychologist_id: int,
    target_date: date,
    busy_intervals: list[BusyInterval] | None = None,
    config: BookingConfig | None = None,
) -> list[str]:
    """
    Free canonical "HH:MM" slots for (psychologist, date), chronological.

    Returns:
        Empty list when there is no availability record or the day is
        switched off.
    """
    config = config or get_booking_config()

    record = AvailabilityStore(db).get_record(psychologist_id, target_date)
    if not record or not record.is_available:
        return []

    candidates = candidate_slots(record)
    if not candidates:
        return []

    booked = BookingConflictChecker(db).booked_times(psychologist_id, target_date)
    rules = load_recurring_rules(db, psychologist_id)

    day = compute_day_availability(candidates, target_date, booked, rules, busy_intervals, config)
    return day.available_slots


def compute_free_slots_range(
    db: Session,
    psychologist_id: int,
    start_date: date,
    end_date: date,
    busy_intervals: list[BusyInterval] | None = None,
    config: BookingConfig | None = None,
) -> list[DayAvailability]:
    """
    Per-date breakdown for every stored availability date in [start_date, end_date].

    Bookings and recurring rules are loaded once for the whole range.
    """
    config = config or get_booking_config()
    if end_date < start_date:
        return []

    records = AvailabilityStore(db).get_records(psychologist_id, start_date, end_date)
    if not records:
        return []

    booked_by_date = BookingConflictChecker(db).booked_times_by_date(
        psychologist_id, start_date, end_date
    )
    rules = load_recurring_rules(db, psychologist_id)

    days = []
    for record in records:
        target_date = date.fromisoformat(record.date)
        if not record.is_available:
            days.append(DayAvailability(date=target_date, is_available=False))
            continue
        days.append(
            compute_day_availability(
                candidate_slots(record),
                target_date,
                booked_by_date.get(target_date, set()),
                rules,
                busy_intervals,
                config,
            )
        )
    return days


def fetch_busy_intervals(
    db: Session,
    psychologist_id: int,
    start_date: date,
    end_date: date,
    client,
    config: BookingConfig | None = None,
) -> list[BusyInterval] | None:
    """
    Busy intervals for a read request.

    Returns:
        [] when no calendar is connected; None when a connected calendar
        could not be read (expired connection, provider failure). Callers
        then serve bookings + recurring blocks only. Refreshed tokens are
        not persisted here; the background sync does that.
    """
    config = config or get_booking_config()

    psychologist = db.get(Psychologists, psychologist_id)
    if not psychologist or not psychologist.google_calendar_credentials:
        return []
    if psychologist.calendar_needs_reconnect:
        return None

    try:
        credentials = json.loads(psychologist.google_calendar_credentials)
    except json.JSONDecodeError:
        logger.error(f"Malformed calendar credentials for psychologist {psychologist_id}")
        return None

    try:
        resolution = resolve_busy_intervals(credentials, start_date, end_date, client, config)
    except CalendarError as e:
        logger.warning(
            f"Calendar unavailable for psychologist {psychologist_id}, "
            f"serving availability without it: {e}"
        )
        return None

    if resolution.connection_expired:
        logger.warning(
            f"Calendar connection expired for psychologist {psychologist_id}, "
            f"serving availability without it"
        )
        return None

    return resolution.intervals
