# backend/therapy_booking/services/reservation.py
"""
Slot reservation: free slot → committed booking, exactly once per slot.

Requested → (free-slot re-check) → Committed | Rejected

The re-check only protects against stale client state. Two requests can
both pass it; the slot_claims unique constraint (plus the partial unique
index of each booking table) decides the winner at commit time. The loser
gets ConflictError("slot already booked"). Nothing is retried.

After the commit the stored availability row is adjusted best-effort: the
booking itself is authoritative, reads exclude it either way.
"""

import logging
from datetime import date, datetime, timezone
from time import monotonic

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, DeadlineExceededError, NotFoundError, ValidationError
from ..models import CANCELLED_STATUS, Psychologists, SlotClaims
from .availability.config import BookingConfig, get_booking_config
from .availability.conflicts import BOOKING_MODELS
from .availability.busy_intervals import BusyInterval
from .availability.materializer import compute_free_slots
from .availability.records import AvailabilityStore
from .availability.time_normalizer import normalize_time, try_normalize_time
from .events import booking_payload, emit_event

logger = logging.getLogger(__name__)

# Bookings in these states can no longer be moved
FINAL_STATUSES = {"completed", "cancelled", "no_show"}

SLOT_TAKEN = "slot already booked"
SLOT_NOT_AVAILABLE = "slot not available"


def _now_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def parse_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}, expected YYYY-MM-DD")


def _booking_model(kind: str):
    model = BOOKING_MODELS.get(kind)
    if model is None:
        raise ValidationError(f"Unknown booking kind: {kind!r}")
    return model


def _get_booking(db: Session, kind: str, booking_id: int):
    booking = db.get(_booking_model(kind), booking_id)
    if not booking:
        raise NotFoundError(f"{kind} booking {booking_id} not found")
    return booking


def _release_stale_claims(db: Session, psychologist_id: int, date_str: str, canonical_time: str) -> None:
    """
    Delete claims on the slot whose booking is gone or cancelled.

    Runs inside the caller's transaction; an active claim is left alone
    and makes the caller's insert fail on the unique constraint.
    """
    claims = (
        db.query(SlotClaims)
        .filter(
            SlotClaims.psychologist_id == psychologist_id,
            SlotClaims.scheduled_date == date_str,
            SlotClaims.scheduled_time == canonical_time,
        )
        .all()
    )
    for claim in claims:
        model = BOOKING_MODELS.get(claim.booking_kind)
        booking = db.get(model, claim.booking_id) if model else None
        if booking is None or booking.status == CANCELLED_STATUS:
            logger.info(
                f"Releasing stale claim {claim.booking_kind}#{claim.booking_id} "
                f"on {date_str} {canonical_time}"
            )
            db.delete(claim)
    db.flush()


def _ensure_free(
    db: Session,
    psychologist_id: int,
    target_date: date,
    canonical_time: str,
    busy_intervals: list[BusyInterval] | None,
    config: BookingConfig,
) -> None:
    free = compute_free_slots(db, psychologist_id, target_date, busy_intervals, config)
    if canonical_time not in free:
        raise ConflictError(SLOT_NOT_AVAILABLE)


def _commit_before(db: Session, deadline: float | None) -> None:
    """
    Commit unless the caller's deadline (time.monotonic() value) has passed.

    A caller that already gave up must not end up with a booking it thinks failed.
    """
    if deadline is not None and monotonic() > deadline:
        db.rollback()
        raise DeadlineExceededError("Request deadline passed, nothing was changed")
    db.commit()


def _validate_slot(target_date, time, config: BookingConfig, now: datetime | None) -> tuple[date, str]:
    target_date = parse_date(target_date)
    canonical_time = normalize_time(time)
    if target_date < config.today(now):
        raise ValidationError(f"Date {target_date} is in the past")
    return target_date, canonical_time


# ── Best-effort availability row adjustments ─────────────────────────────


def _take_from_availability(db: Session, psychologist_id: int, target_date: date, canonical_time: str) -> None:
    try:
        AvailabilityStore(db).remove_slot(psychologist_id, target_date, canonical_time)
    except Exception:
        db.rollback()
        logger.exception(
            f"Failed to remove {target_date} {canonical_time} from availability "
            f"of psychologist {psychologist_id}"
        )


def _return_to_availability(db: Session, psychologist_id: int, target_date: date, canonical_time: str) -> None:
    try:
        AvailabilityStore(db).restore_slot(psychologist_id, target_date, canonical_time)
    except Exception:
        db.rollback()
        logger.exception(
            f"Failed to restore {target_date} {canonical_time} to availability "
            f"of psychologist {psychologist_id}"
        )


# ── Operations ───────────────────────────────────────────────────────────


def reserve(
    db: Session,
    psychologist_id: int,
    target_date,
    time,
    kind: str = "therapy",
    client_id: int | None = None,
    busy_intervals: list[BusyInterval] | None = None,
    config: BookingConfig | None = None,
    now: datetime | None = None,
    deadline: float | None = None,
):
    """
    Book (psychologist, date, time) for a client.

    Returns:
        The committed booking row (Sessions or AssessmentSessions)

    Raises:
        ValidationError: unknown kind, bad date/time, date in the past
        NotFoundError: psychologist does not exist
        ConflictError: slot not offered, or taken by a concurrent request
        DeadlineExceededError: deadline passed before the commit
    """
    config = config or get_booking_config()
    model = _booking_model(kind)
    target_date, canonical_time = _validate_slot(target_date, time, config, now)

    if not db.get(Psychologists, psychologist_id):
        raise NotFoundError(f"Psychologist {psychologist_id} not found")

    _ensure_free(db, psychologist_id, target_date, canonical_time, busy_intervals, config)

    date_str = target_date.isoformat()
    now_str = _now_str()
    try:
        _release_stale_claims(db, psychologist_id, date_str, canonical_time)
        booking = model(
            psychologist_id=psychologist_id,
            client_id=client_id,
            scheduled_date=date_str,
            scheduled_time=canonical_time,
            status="booked",
            reminder_sent=0,
            created_at=now_str,
            updated_at=now_str,
        )
        db.add(booking)
        db.flush()
        db.add(SlotClaims(
            psychologist_id=psychologist_id,
            scheduled_date=date_str,
            scheduled_time=canonical_time,
            booking_kind=kind,
            booking_id=booking.id,
            created_at=now_str,
        ))
        _commit_before(db, deadline)
    except IntegrityError:
        db.rollback()
        logger.info(
            f"Reservation lost race: psychologist={psychologist_id} {date_str} {canonical_time}"
        )
        raise ConflictError(SLOT_TAKEN)

    db.refresh(booking)
    logger.info(
        f"Booked {kind} #{booking.id}: psychologist={psychologist_id} {date_str} {canonical_time}"
    )

    _take_from_availability(db, psychologist_id, target_date, canonical_time)
    emit_event("booking_created", booking_payload(kind, booking))
    return booking


def reschedule(
    db: Session,
    kind: str,
    booking_id: int,
    new_date,
    new_time,
    busy_intervals: list[BusyInterval] | None = None,
    config: BookingConfig | None = None,
    now: datetime | None = None,
    deadline: float | None = None,
):
    """
    Move a booking to a new slot and reset its reminder.

    Raises:
        NotFoundError: booking does not exist
        ValidationError: booking is completed/cancelled/no_show, bad slot
            input, or the booking already sits on that slot
        ConflictError: new slot not offered, or taken concurrently
        DeadlineExceededError: deadline passed before the commit
    """
    config = config or get_booking_config()
    booking = _get_booking(db, kind, booking_id)

    if booking.status in FINAL_STATUSES:
        raise ValidationError(f"Cannot reschedule a {booking.status} booking")

    new_date, canonical_time = _validate_slot(new_date, new_time, config, now)
    old_date = parse_date(booking.scheduled_date)
    old_time = try_normalize_time(booking.scheduled_time)

    if old_date == new_date and old_time == canonical_time:
        raise ValidationError("Booking is already scheduled at this slot")

    psychologist_id = booking.psychologist_id
    _ensure_free(db, psychologist_id, new_date, canonical_time, busy_intervals, config)

    date_str = new_date.isoformat()
    try:
        _release_stale_claims(db, psychologist_id, date_str, canonical_time)
        claim = (
            db.query(SlotClaims)
            .filter(SlotClaims.booking_kind == kind, SlotClaims.booking_id == booking.id)
            .first()
        )
        if claim:
            claim.scheduled_date = date_str
            claim.scheduled_time = canonical_time
        else:
            db.add(SlotClaims(
                psychologist_id=psychologist_id,
                scheduled_date=date_str,
                scheduled_time=canonical_time,
                booking_kind=kind,
                booking_id=booking.id,
                created_at=_now_str(),
            ))

        booking.scheduled_date = date_str
        booking.scheduled_time = canonical_time
        booking.status = "rescheduled"
        booking.reminder_sent = 0
        booking.updated_at = _now_str()
        _commit_before(db, deadline)
    except IntegrityError:
        db.rollback()
        raise ConflictError(SLOT_TAKEN)

    db.refresh(booking)
    logger.info(
        f"Rescheduled {kind} #{booking.id}: {old_date} {old_time} → {date_str} {canonical_time}"
    )

    _take_from_availability(db, psychologist_id, new_date, canonical_time)
    if old_time and old_date >= config.today(now):
        _return_to_availability(db, psychologist_id, old_date, old_time)

    emit_event("booking_rescheduled", {
        **booking_payload(kind, booking),
        "old_date": old_date.isoformat(),
        "old_time": old_time,
    })
    return booking


def cancel(
    db: Session,
    kind: str,
    booking_id: int,
    config: BookingConfig | None = None,
    now: datetime | None = None,
    deadline: float | None = None,
):
    """
    Cancel a booking and release its slot claim in one transaction.

    Cancelling an already cancelled booking returns it unchanged.

    Raises:
        NotFoundError: booking does not exist
        ValidationError: booking is completed or no_show
        DeadlineExceededError: deadline passed before the commit
    """
    config = config or get_booking_config()
    booking = _get_booking(db, kind, booking_id)

    if booking.status == CANCELLED_STATUS:
        return booking
    if booking.status in FINAL_STATUSES:
        raise ValidationError(f"Cannot cancel a {booking.status} booking")

    booking.status = CANCELLED_STATUS
    booking.updated_at = _now_str()
    (
        db.query(SlotClaims)
        .filter(SlotClaims.booking_kind == kind, SlotClaims.booking_id == booking.id)
        .delete(synchronize_session=False)
    )
    _commit_before(db, deadline)
    db.refresh(booking)
    logger.info(f"Cancelled {kind} #{booking.id}")

    slot_date = parse_date(booking.scheduled_date)
    slot_time = try_normalize_time(booking.scheduled_time)
    if slot_time and slot_date >= config.today(now):
        _return_to_availability(db, booking.psychologist_id, slot_date, slot_time)

    emit_event("booking_cancelled", booking_payload(kind, booking))
    return booking
