# backend/therapy_booking/routers/bookings.py
"""
Booking API endpoints.

POST /bookings                              - Reserve a free slot
POST /bookings/{kind}/{booking_id}/reschedule - Move a booking to a new slot
POST /bookings/{kind}/{booking_id}/cancel     - Cancel a booking

Reservations run in a worker thread with their own DB session, bounded by
settings.request_timeout_seconds (504 on timeout). The worker gets the same
deadline and rolls back instead of committing once it has passed.
"""

import asyncio
from datetime import date
from time import monotonic

from fastapi import APIRouter, Depends, HTTPException, status

from ..config import settings
from ..database import SessionLocal
from ..errors import BookingError
from ..schemas.bookings import (
    BookingCreate,
    BookingKind,
    BookingRead,
    BookingReschedule,
)
from ..services.availability import fetch_busy_intervals
from ..services.availability.conflicts import BOOKING_MODELS
from ..services.google_calendar import get_calendar_client
from ..services.reservation import cancel, reschedule, reserve
from .http_errors import to_http

router = APIRouter(prefix="/bookings", tags=["bookings"])

# Extra wait so a worker past its deadline can report it before we give up
COMMIT_GRACE_SECONDS = 1.0


def get_session_factory():
    """Dependency: sessions are opened inside the worker thread."""
    return SessionLocal


def _to_read(kind: str, booking) -> BookingRead:
    return BookingRead(
        id=booking.id,
        kind=kind,
        psychologist_id=booking.psychologist_id,
        client_id=booking.client_id,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time,
        status=booking.status,
        reminder_sent=bool(booking.reminder_sent),
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


async def _run_with_timeout(func):
    """Run func(deadline) in a worker thread; the deadline is a monotonic() value."""
    timeout = settings.request_timeout_seconds
    deadline = monotonic() + timeout
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, deadline),
            timeout=timeout + COMMIT_GRACE_SECONDS,
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Booking request timed out, re-check availability",
        )
    except BookingError as e:
        raise to_http(e)


def _busy_for(db, psychologist_id: int, target_date: date, calendar_client):
    return fetch_busy_intervals(db, psychologist_id, target_date, target_date, calendar_client)


@router.post("/", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreate,
    session_factory=Depends(get_session_factory),
    calendar_client=Depends(get_calendar_client),
):
    def _reserve(deadline: float) -> BookingRead:
        db = session_factory()
        try:
            busy = _busy_for(db, data.psychologist_id, data.date, calendar_client)
            booking = reserve(
                db,
                data.psychologist_id,
                data.date,
                data.time,
                kind=data.kind,
                client_id=data.client_id,
                busy_intervals=busy,
                deadline=deadline,
            )
            return _to_read(data.kind, booking)
        finally:
            db.close()

    return await _run_with_timeout(_reserve)


@router.post("/{kind}/{booking_id}/reschedule", response_model=BookingRead)
async def reschedule_booking(
    kind: BookingKind,
    booking_id: int,
    data: BookingReschedule,
    session_factory=Depends(get_session_factory),
    calendar_client=Depends(get_calendar_client),
):
    def _reschedule(deadline: float) -> BookingRead:
        db = session_factory()
        try:
            busy = None
            current = reschedule_target(db, kind, booking_id)
            if current is not None:
                busy = _busy_for(db, current, data.date, calendar_client)
            booking = reschedule(
                db, kind, booking_id, data.date, data.time, busy_intervals=busy, deadline=deadline
            )
            return _to_read(kind, booking)
        finally:
            db.close()

    return await _run_with_timeout(_reschedule)


@router.post("/{kind}/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    kind: BookingKind,
    booking_id: int,
    session_factory=Depends(get_session_factory),
):
    def _cancel(deadline: float) -> BookingRead:
        db = session_factory()
        try:
            return _to_read(kind, cancel(db, kind, booking_id, deadline=deadline))
        finally:
            db.close()

    return await _run_with_timeout(_cancel)


def reschedule_target(db, kind: str, booking_id: int) -> int | None:
    """Psychologist of the booking, None when it does not exist."""
    booking = db.get(BOOKING_MODELS[kind], booking_id)
    return booking.psychologist_id if booking else None
