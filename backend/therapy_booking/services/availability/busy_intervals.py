# backend/therapy_booking/services/availability/busy_intervals.py
"""
External busy intervals (Google Calendar).

Raw calendar events are turned into timezone-aware BusyInterval values,
classified (blocking or exempt) and tested for overlap against slots.

Classification:
✓ blocks: any confirmed/tentative event, with or without a matching booking
✗ exempt: cancelled / deleted events
✗ exempt: holidays and observances ("holiday", "festival", ...)
✗ exempt: events this platform wrote itself (configurable title markers)

Overlap is evaluated per local date. An event crossing midnight blocks
[start, end-of-day) on its first date, [start-of-day, end) on its last date
and every full date in between.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from ...errors import ProviderAuthError
from .config import BookingConfig, get_booking_config

logger = logging.getLogger(__name__)

EXEMPT_STATUSES = {"cancelled", "deleted"}


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime
    title: str = "Busy"
    status: str = "confirmed"
    source: str = "google_calendar"
    event_id: str | None = None


@dataclass
class BusyResolution:
    """
    Result of fetching busy intervals for one psychologist.

    connection_expired=True means the refresh credential is revoked: the
    caller skips this psychologist and flags the calendar for reconnection.
    credentials carries refreshed tokens when a refresh happened.
    """
    intervals: list[BusyInterval] = field(default_factory=list)
    connection_expired: bool = False
    credentials: dict | None = None
    total_events: int = 0


# ── Parsing ──────────────────────────────────────────────────────────────


def _parse_boundary(value, tz: ZoneInfo) -> datetime:
    """Event boundary → aware datetime in tz. Date-only values are local midnight."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=tz)
    else:
        text = str(value).strip()
        if len(text) == 10:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=tz)
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def parse_event(raw: dict, config: BookingConfig | None = None) -> BusyInterval | None:
    """
    Convert a raw event {start, end, title, status, event_id} to a BusyInterval.

    Returns None for events without usable boundaries.
    """
    config = config or get_booking_config()
    tz = config.tz
    try:
        start = _parse_boundary(raw["start"], tz)
        end = _parse_boundary(raw["end"], tz)
    except (KeyError, TypeError, ValueError):
        logger.warning(f"Skipping calendar event with invalid boundaries: {raw.get('event_id')}")
        return None

    if end <= start:
        return None

    return BusyInterval(
        start=start,
        end=end,
        title=raw.get("title") or "Busy",
        status=(raw.get("status") or "confirmed").lower(),
        source=raw.get("source") or "google_calendar",
        event_id=raw.get("event_id"),
    )


# ── Classification ───────────────────────────────────────────────────────


def is_holiday(title: str, config: BookingConfig | None = None) -> bool:
    config = config or get_booking_config()
    lowered = (title or "").lower()
    return any(keyword in lowered for keyword in config.holiday_keywords)


def is_system_event(title: str, config: BookingConfig | None = None) -> bool:
    """
    Title carries one of this platform's own event markers.

    Title matching is a heuristic: a renamed event, or a personal event that
    happens to contain a marker, is misclassified.
    """
    config = config or get_booking_config()
    lowered = (title or "").lower()
    return any(marker.lower() in lowered for marker in config.system_event_markers if marker)


def is_blocking(interval: BusyInterval, config: BookingConfig | None = None) -> bool:
    config = config or get_booking_config()
    if interval.status in EXEMPT_STATUSES:
        return False
    if is_holiday(interval.title, config):
        return False
    if is_system_event(interval.title, config):
        return False
    return True


# ── Overlap ──────────────────────────────────────────────────────────────


def overlaps(slot_start: datetime, slot_end: datetime, start: datetime, end: datetime) -> bool:
    return slot_start < end and slot_end > start


def day_windows(
    interval: BusyInterval,
    config: BookingConfig | None = None,
) -> dict[date, tuple[datetime, datetime]]:
    """
    Split an interval into per-local-date windows.

    Returns:
        {date: (window_start, window_end)}; an event ending exactly at
        midnight does not touch the following date.
    """
    config = config or get_booking_config()
    tz = config.tz
    start = interval.start.astimezone(tz)
    end = interval.end.astimezone(tz)

    windows: dict[date, tuple[datetime, datetime]] = {}
    current = start.date()
    while current <= end.date():
        day_open = config.day_start(current)
        day_close = config.day_start(current + timedelta(days=1))
        window_start = max(start, day_open)
        window_end = min(end, day_close)
        if window_start < window_end:
            windows[current] = (window_start, window_end)
        current += timedelta(days=1)

    return windows


def blocked_slot_times(
    slot_times: list[str],
    target_date: date,
    intervals: list[BusyInterval],
    config: BookingConfig | None = None,
) -> set[str]:
    """
    Canonical slot times on target_date overlapping a blocking interval.

    Windows on target_date and on the following date are used: spillover
    from events anchored on neighbour dates is honoured, and a late slot
    running past midnight meets events of the next morning.
    """
    config = config or get_booking_config()
    if not slot_times or not intervals:
        return set()

    next_date = target_date + timedelta(days=1)
    windows = []
    for interval in intervals:
        if not is_blocking(interval, config):
            continue
        per_date = day_windows(interval, config)
        windows.extend(per_date[d] for d in (target_date, next_date) if d in per_date)

    if not windows:
        return set()

    blocked: set[str] = set()
    for slot_time in slot_times:
        slot_start, slot_end = config.slot_bounds(target_date, slot_time)
        if any(overlaps(slot_start, slot_end, w_start, w_end) for w_start, w_end in windows):
            blocked.add(slot_time)
    return blocked


# ── Resolution ───────────────────────────────────────────────────────────


def resolve_busy_intervals(
    credentials: dict,
    start_date: date,
    end_date: date,
    client,
    config: BookingConfig | None = None,
) -> BusyResolution:
    """
    Fetch, parse and classify busy intervals for [start_date, end_date].

    client must provide list_events(credentials, time_min, time_max)
    returning (raw_events, credentials).

    An expired connection comes back as connection_expired=True rather than
    an exception. TransientProviderError propagates to the caller.
    """
    config = config or get_booking_config()
    time_min = config.day_start(start_date)
    # the last slot of end_date may run past midnight
    time_max = config.day_start(end_date + timedelta(days=1)) + config.slot_duration

    try:
        raw_events, fresh_credentials = client.list_events(credentials, time_min, time_max)
    except ProviderAuthError as e:
        logger.warning(f"Google Calendar connection expired: {e}")
        return BusyResolution(connection_expired=True, credentials=credentials)

    intervals = []
    for raw in raw_events:
        interval = parse_event(raw, config)
        if interval is not None and is_blocking(interval, config):
            intervals.append(interval)

    logger.info(
        f"Resolved {len(intervals)} blocking interval(s) out of {len(raw_events)} "
        f"calendar event(s) for {start_date}..{end_date}"
    )

    return BusyResolution(
        intervals=intervals,
        credentials=fresh_credentials,
        total_events=len(raw_events),
    )
