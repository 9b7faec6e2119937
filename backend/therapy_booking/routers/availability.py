# backend/therapy_booking/routers/availability.py
"""
Availability API endpoints.

GET /availability/slots - Free slots of a psychologist for one date
GET /availability       - Per-date breakdown for a date range
PUT /availability       - Set candidate slots for a date
"""

import json
from datetime import date, timedelta
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import BookingError
from ..models import Psychologists
from ..schemas.availability import (
    AvailabilityRangeResponse,
    AvailabilityRead,
    AvailabilityUpdate,
    DayAvailabilityRead,
    FreeSlotsResponse,
)
from ..services.availability import (
    AvailabilityStore,
    compute_free_slots,
    compute_free_slots_range,
    fetch_busy_intervals,
    get_booking_config,
)
from ..services.google_calendar import get_calendar_client
from .http_errors import to_http


router = APIRouter(prefix="/availability", tags=["availability"])


def _get_psychologist(db: Session, psychologist_id: int) -> Psychologists:
    obj = db.get(Psychologists, psychologist_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Psychologist not found")
    return obj


@router.get("/slots", response_model=FreeSlotsResponse)
def get_free_slots(
    psychologist_id: int,
    date: date,
    db: Session = Depends(get_db),
    calendar_client=Depends(get_calendar_client),
):
    """Free slots for a date: candidates minus bookings, blocks and busy time."""
    _get_psychologist(db, psychologist_id)
    config = get_booking_config()

    busy = fetch_busy_intervals(db, psychologist_id, date, date, calendar_client, config)
    slots = compute_free_slots(db, psychologist_id, date, busy, config)

    return FreeSlotsResponse(
        psychologist_id=psychologist_id,
        date=date,
        slots=slots,
        calendar_checked=busy is not None,
    )


@router.get("/", response_model=AvailabilityRangeResponse)
def get_availability_range(
    psychologist_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    calendar_client=Depends(get_calendar_client),
):
    """Per-date breakdown; calendar busy time is fetched once for the range."""
    _get_psychologist(db, psychologist_id)
    config = get_booking_config()

    if start_date is None:
        start_date = config.today()
    if end_date is None:
        end_date = start_date + timedelta(days=config.horizon_days)
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")

    busy = fetch_busy_intervals(db, psychologist_id, start_date, end_date, calendar_client, config)
    days = compute_free_slots_range(db, psychologist_id, start_date, end_date, busy, config)

    return AvailabilityRangeResponse(
        psychologist_id=psychologist_id,
        start_date=start_date,
        end_date=end_date,
        days=[
            DayAvailabilityRead(
                date=day.date,
                is_available=day.is_available,
                available_slots=day.available_slots,
                booked_slots=day.booked_slots,
                recurring_blocked_slots=day.recurring_blocked_slots,
                busy_slots=day.busy_slots,
                total_slots=day.total_slots,
                external_events=day.external_events,
            )
            for day in days
        ],
        calendar_checked=busy is not None,
    )


@router.put("/", response_model=AvailabilityRead)
def set_availability(
    data: AvailabilityUpdate,
    db: Session = Depends(get_db),
):
    """Replace candidate slots of a date (stored as canonical "HH:MM")."""
    _get_psychologist(db, data.psychologist_id)

    try:
        record = AvailabilityStore(db).set_day_slots(
            data.psychologist_id, data.date, data.time_slots, data.is_available
        )
    except BookingError as e:
        raise to_http(e)

    return AvailabilityRead(
        psychologist_id=record.psychologist_id,
        date=record.date,
        time_slots=json.loads(record.time_slots),
        is_available=bool(record.is_available),
    )
