# backend/therapy_booking/services/availability/conflicts.py
"""
Booked times across both booking tables.

Therapy sessions and assessment sessions live in separate tables but form
one conflict domain: a slot taken in either is taken.
"""

from collections import defaultdict
from datetime import date

from sqlalchemy.orm import Session

from ...models import CANCELLED_STATUS, AssessmentSessions, Sessions
from .time_normalizer import try_normalize_time

BOOKING_MODELS = {
    "therapy": Sessions,
    "assessment": AssessmentSessions,
}


class BookingConflictChecker:
    """Union of active bookings (status != cancelled) over both booking tables."""

    def __init__(self, db: Session):
        self.db = db

    def booked_times(self, psychologist_id: int, target_date: date) -> set[str]:
        """Canonical "HH:MM" times occupied on target_date."""
        date_str = target_date.isoformat()
        times: set[str] = set()
        for model in BOOKING_MODELS.values():
            rows = (
                self.db.query(model.scheduled_time)
                .filter(
                    model.psychologist_id == psychologist_id,
                    model.scheduled_date == date_str,
                    model.status != CANCELLED_STATUS,
                )
                .all()
            )
            times.update(t for t in (try_normalize_time(r.scheduled_time) for r in rows) if t)
        return times

    def booked_times_by_date(
        self,
        psychologist_id: int,
        start_date: date,
        end_date: date,
    ) -> dict[date, set[str]]:
        """Occupied canonical times per date in [start_date, end_date]."""
        result: dict[date, set[str]] = defaultdict(set)
        for model in BOOKING_MODELS.values():
            rows = (
                self.db.query(model.scheduled_date, model.scheduled_time)
                .filter(
                    model.psychologist_id == psychologist_id,
                    model.scheduled_date >= start_date.isoformat(),
                    model.scheduled_date <= end_date.isoformat(),
                    model.status != CANCELLED_STATUS,
                )
                .all()
            )
            for row in rows:
                canonical = try_normalize_time(row.scheduled_time)
                if canonical:
                    result[date.fromisoformat(row.scheduled_date)].add(canonical)
        return dict(result)
