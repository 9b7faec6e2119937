# backend/therapy_booking/services/availability/records.py
"""
Storage of psychologists' candidate slots (one availability row per date).

Row: psychologist_id + date "YYYY-MM-DD" → time_slots JSON list.
Stored entries keep whatever format they were written in; reads hand out
canonical "HH:MM" only. Writes that remove a slot keep the other entries
untouched.
"""

import json
import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from ...models import Availability
from .time_normalizer import normalize_time, try_normalize_time

logger = logging.getLogger(__name__)


def _now_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def raw_slots(record: Availability) -> list:
    """Stored time_slots as a list (malformed JSON reads as empty)."""
    try:
        value = json.loads(record.time_slots) if record.time_slots else []
    except json.JSONDecodeError:
        logger.error(f"Malformed time_slots in availability {record.id}")
        return []
    return value if isinstance(value, list) else []


def candidate_slots(record: Availability) -> list[str]:
    """Canonical, de-duplicated, chronologically sorted candidate slots."""
    canonical = {t for t in (try_normalize_time(s) for s in raw_slots(record)) if t}
    return sorted(canonical)


class AvailabilityStore:
    """SQL storage wrapper for availability rows."""

    def __init__(self, db: Session):
        self.db = db

    # ── Read ─────────────────────────────────────────────────────────────

    def get_record(self, psychologist_id: int, target_date: date) -> Availability | None:
        return (
            self.db.query(Availability)
            .filter(
                Availability.psychologist_id == psychologist_id,
                Availability.date == target_date.isoformat(),
            )
            .first()
        )

    def get_records(
        self,
        psychologist_id: int,
        start_date: date,
        end_date: date,
    ) -> list[Availability]:
        """All rows for the psychologist in [start_date, end_date], by date."""
        return (
            self.db.query(Availability)
            .filter(
                Availability.psychologist_id == psychologist_id,
                Availability.date >= start_date.isoformat(),
                Availability.date <= end_date.isoformat(),
            )
            .order_by(Availability.date)
            .all()
        )

    # ── Write ────────────────────────────────────────────────────────────

    def set_day_slots(
        self,
        psychologist_id: int,
        target_date: date,
        time_slots: list[str],
        is_available: bool = True,
    ) -> Availability:
        """
        Replace candidate slots for a date (created when missing).

        Slots are stored canonical; NormalizationError propagates.
        """
        canonical = sorted({normalize_time(s) for s in time_slots})
        now = _now_str()

        record = self.get_record(psychologist_id, target_date)
        if record:
            record.time_slots = json.dumps(canonical)
            record.is_available = int(is_available)
            record.updated_at = now
        else:
            record = Availability(
                psychologist_id=psychologist_id,
                date=target_date.isoformat(),
                time_slots=json.dumps(canonical),
                is_available=int(is_available),
                created_at=now,
                updated_at=now,
            )
            self.db.add(record)

        self.db.commit()
        self.db.refresh(record)
        return record

    def remove_times(self, record: Availability, canonical_times: set[str]) -> list:
        """
        Drop entries matching canonical_times from the row (not committed).

        Returns:
            The removed raw entries.
        """
        kept, removed = [], []
        for entry in raw_slots(record):
            if try_normalize_time(entry) in canonical_times:
                removed.append(entry)
            else:
                kept.append(entry)

        if removed:
            record.time_slots = json.dumps(kept)
            record.updated_at = _now_str()
        return removed

    def remove_slot(self, psychologist_id: int, target_date: date, canonical_time: str) -> bool:
        """Remove one slot from the stored row and commit. False if nothing changed."""
        record = self.get_record(psychologist_id, target_date)
        if not record:
            return False
        if not self.remove_times(record, {canonical_time}):
            return False
        self.db.commit()
        return True

    def restore_slot(self, psychologist_id: int, target_date: date, canonical_time: str) -> bool:
        """Put a freed slot back into an existing row and commit."""
        record = self.get_record(psychologist_id, target_date)
        if not record:
            return False

        entries = raw_slots(record)
        if canonical_time in {try_normalize_time(e) for e in entries}:
            return False

        entries.append(canonical_time)
        entries.sort(key=lambda e: try_normalize_time(e) or "")
        record.time_slots = json.dumps(entries)
        record.updated_at = _now_str()
        self.db.commit()
        return True

    # ── Delete ───────────────────────────────────────────────────────────

    def delete_before(self, cutoff: date) -> int:
        """Delete all rows dated before cutoff. Returns number of deleted rows."""
        deleted = (
            self.db.query(Availability)
            .filter(Availability.date < cutoff.isoformat())
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
