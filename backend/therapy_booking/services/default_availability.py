"""
Default availability roll-forward.

Every psychologist gets continuous 1-hour slots (8:00 AM … 9:00 PM starts)
for the next three weeks. Shortly after startup every psychologist gets the
full window; a daily job at local midnight then adds the date that just
entered the window and deletes rows of past dates.

Existing rows are never overwritten: a psychologist's own edits win.

Runs as an asyncio task in backend lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import json
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models import Availability, Psychologists
from .availability.config import BookingConfig, get_booking_config
from .availability.records import AvailabilityStore
from .availability.time_normalizer import format_12h

logger = logging.getLogger(__name__)

# Initial fill runs this long after startup
STARTUP_DELAY_SECONDS = 10.0


def date_range(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def generate_default_time_slots(config: BookingConfig | None = None) -> list[str]:
    """["8:00 AM", "9:00 AM", ..., "9:00 PM"] (last slot ends at day end)."""
    config = config or get_booking_config()
    return [
        format_12h(f"{hour:02d}:00")
        for hour in range(config.default_day_start_hour, config.default_day_end_hour)
    ]


def _new_record(psychologist_id: int, target_date: date, slots: list[str]) -> Availability:
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    return Availability(
        psychologist_id=psychologist_id,
        date=target_date.isoformat(),
        time_slots=json.dumps(slots),
        is_available=1,
        created_at=now,
        updated_at=now,
    )


def ensure_default_availability(
    db: Session,
    psychologist_id: int,
    days: int | None = None,
    config: BookingConfig | None = None,
    today: date | None = None,
) -> int:
    """
    Create missing rows for today .. today + days (inclusive).

    Returns:
        Number of rows created
    """
    config = config or get_booking_config()
    days = config.horizon_days if days is None else days
    today = today or config.today()
    end_date = today + timedelta(days=days)

    existing = {
        record.date
        for record in AvailabilityStore(db).get_records(psychologist_id, today, end_date)
    }
    slots = generate_default_time_slots(config)

    created = 0
    for target_date in date_range(today, end_date):
        if target_date.isoformat() in existing:
            continue
        db.add(_new_record(psychologist_id, target_date, slots))
        created += 1

    if created:
        db.commit()
        logger.info(f"Created {created} default availability row(s) for psychologist {psychologist_id}")
    return created


def fill_default_availability(
    db: Session,
    config: BookingConfig | None = None,
    today: date | None = None,
) -> int:
    """ensure_default_availability for every psychologist. Returns rows created."""
    config = config or get_booking_config()
    today = today or config.today()

    created = 0
    for (psychologist_id,) in db.query(Psychologists.id).order_by(Psychologists.id).all():
        created += ensure_default_availability(db, psychologist_id, config=config, today=today)

    logger.info(f"Default availability window filled: {created} row(s) created")
    return created


def add_next_day_availability(
    db: Session,
    config: BookingConfig | None = None,
    today: date | None = None,
) -> int:
    """
    Add the row for today + horizon for every psychologist that lacks it.

    Returns:
        Number of rows created
    """
    config = config or get_booking_config()
    today = today or config.today()
    target_date = today + timedelta(days=config.horizon_days)
    slots = generate_default_time_slots(config)

    psychologist_ids = [row.id for row in db.query(Psychologists.id).all()]
    present = {
        row.psychologist_id
        for row in db.query(Availability.psychologist_id)
        .filter(Availability.date == target_date.isoformat())
        .all()
    }

    created = 0
    for psychologist_id in psychologist_ids:
        if psychologist_id in present:
            continue
        db.add(_new_record(psychologist_id, target_date, slots))
        created += 1

    db.commit()
    logger.info(f"Daily availability for {target_date}: {created} created, {len(present)} existing")
    return created


def cleanup_past_availability(
    db: Session,
    config: BookingConfig | None = None,
    today: date | None = None,
) -> int:
    """Delete rows dated before today. Returns number of deleted rows."""
    config = config or get_booking_config()
    today = today or config.today()
    deleted = AvailabilityStore(db).delete_before(today)
    logger.info(f"Deleted {deleted} past availability row(s) before {today}")
    return deleted


def _run_initial_fill() -> None:
    """Give every psychologist the full window (new ones included)."""
    db = SessionLocal()
    try:
        fill_default_availability(db)
    finally:
        db.close()


def _run_daily_update() -> None:
    """Roll availability forward one day (synchronous)."""
    db = SessionLocal()
    try:
        add_next_day_availability(db)
        cleanup_past_availability(db)
    finally:
        db.close()


def seconds_until_next_midnight(config: BookingConfig | None = None, now: datetime | None = None) -> float:
    config = config or get_booking_config()
    now = (now or datetime.now(config.tz)).astimezone(config.tz)
    next_midnight = config.day_start(now.date() + timedelta(days=1))
    return max((next_midnight - now).total_seconds(), 1.0)


async def daily_availability_loop(startup_delay_seconds: float = STARTUP_DELAY_SECONDS) -> None:
    """
    Periodic loop: fill the window once after startup, then roll
    availability forward at every local midnight.
    """
    logger.info("daily_availability_loop started")

    try:
        await asyncio.sleep(startup_delay_seconds)
        try:
            await asyncio.to_thread(_run_initial_fill)
        except Exception:
            logger.exception("daily_availability_loop initial fill error")

        while True:
            await asyncio.sleep(seconds_until_next_midnight())
            try:
                await asyncio.to_thread(_run_daily_update)
            except asyncio.CancelledError:
                logger.info("daily_availability_loop cancelled")
                raise
            except Exception:
                logger.exception("daily_availability_loop error")
    except asyncio.CancelledError:
        pass
