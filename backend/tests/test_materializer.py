import json
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from therapy_booking.errors import ConflictError, TransientProviderError, ProviderAuthError
from therapy_booking.models import AssessmentSessions, Sessions
from therapy_booking.services.availability.busy_intervals import BusyInterval
from therapy_booking.services.availability.materializer import (
    compute_free_slots,
    compute_free_slots_range,
    fetch_busy_intervals,
)
from therapy_booking.services.availability.recurring import upsert_block
from therapy_booking.services.reservation import reserve

IST = ZoneInfo('Asia/Kolkata')
TARGET = date(2025, 1, 10)
NOW = datetime(2025, 1, 9, 12, 0, tzinfo=IST)


def _book(db, model, psychologist_id: int, slot_time: str, status: str = 'booked', target: date = TARGET) -> None:
    db.add(model(
        psychologist_id=psychologist_id,
        scheduled_date=target.isoformat(),
        scheduled_time=slot_time,
        status=status,
    ))
    db.commit()


def test_booking_scenario(db, make_psychologist, add_availability, config) -> None:
    psychologist = make_psychologist()
    add_availability(psychologist.id, TARGET, ['14:00', '15:00', '16:00'])

    assert compute_free_slots(db, psychologist.id, TARGET, config=config) == ['14:00', '15:00', '16:00']

    reserve(db, psychologist.id, TARGET, '15:00', 'therapy', config=config, now=NOW)

    assert compute_free_slots(db, psychologist.id, TARGET, config=config) == ['14:00', '16:00']
    with pytest.raises(ConflictError):
        reserve(db, psychologist.id, TARGET, '15:00', 'therapy', config=config, now=NOW)


def test_candidates_are_normalized_and_deduplicated(db, make_psychologist, add_availability, config) -> None:
    psychologist = make_psychologist()
    add_availability(psychologist.id, TARGET, ['5:00 PM', '17:00:00', '9:00 AM', 'lunch', '10:00-11:00'])

    assert compute_free_slots(db, psychologist.id, TARGET, config=config) == ['09:00', '10:00', '17:00']


def test_missing_or_disabled_record_has_no_slots(db, make_psychologist, add_availability, config) -> None:
    psychologist = make_psychologist()
    add_availability(psychologist.id, TARGET, ['09:00'], is_available=False)

    assert compute_free_slots(db, psychologist.id, TARGET, config=config) == []
    assert compute_free_slots(db, psychologist.id, TARGET + timedelta(days=1), config=config) == []


def test_active_bookings_of_both_kinds_are_excluded(db, make_psychologist, add_availability, config) -> None:
    psychologist = make_psychologist()
    add_availability(psychologist.id, TARGET, ['09:00', '10:00', '11:00', '12:00', '13:00'])
    _book(db, Sessions, psychologist.id, '09:00')
    _book(db, AssessmentSessions, psychologist.id, '10:00 AM', status='completed')
    _book(db, Sessions, psychologist.id, '11:00:00', status='no_show')
    _book(db, AssessmentSessions, psychologist.id, '12:00', status='cancelled')

    assert compute_free_slots(db, psychologist.id, TARGET, config=config) == ['12:00', '13:00']


def test_bookings_of_other_psychologists_do_not_count(db, make_psychologist, add_availability, config) -> None:
    first = make_psychologist(first_name='Asha')
    second = make_psychologist(first_name='Ravi')
    add_availability(first.id, TARGET, ['09:00'])
    _book(db, Sessions, second.id, '09:00')

    assert compute_free_slots(db, first.id, TARGET, config=config) == ['09:00']


def test_busy_intervals_remove_overlapping_slots(db, make_psychologist, add_availability, config) -> None:
    psychologist = make_psychologist()
    add_availability(psychologist.id, TARGET, ['08:00', '09:00', '14:00', '22:00'])
    busy = [
        # anchored on the previous date, spills into the morning
        BusyInterval(
            start=datetime(2025, 1, 9, 21, 0, tzinfo=IST),
            end=datetime(2025, 1, 10, 9, 0, tzinfo=IST),
        ),
        BusyInterval(
            start=datetime(2025, 1, 10, 22, 30, tzinfo=IST),
            end=datetime(2025, 1, 10, 23, 0, tzinfo=IST),
        ),
        BusyInterval(
            start=datetime(2025, 1, 10, 14, 0, tzinfo=IST),
            end=datetime(2025, 1, 10, 15, 0, tzinfo=IST),
            title='Republic Day holiday',
        ),
    ]

    assert compute_free_slots(db, psychologist.id, TARGET, busy, config=config) == ['09:00', '14:00']


def test_range_breakdown(db, make_psychologist, add_availability, config) -> None:
    psychologist = make_psychologist()
    sunday = date(2025, 1, 12)
    add_availability(psychologist.id, TARGET, ['09:00', '10:00', '11:00', '12:00'])
    add_availability(psychologist.id, TARGET + timedelta(days=1), ['09:00'], is_available=False)
    add_availability(psychologist.id, sunday, ['09:00'])
    _book(db, AssessmentSessions, psychologist.id, '09:00')
    upsert_block(db, psychologist.id, 5, False, ['10:00'])  # Fridays 10:00
    upsert_block(db, psychologist.id, 0, True)
    busy = [BusyInterval(
        start=datetime(2025, 1, 10, 11, 0, tzinfo=IST),
        end=datetime(2025, 1, 10, 12, 0, tzinfo=IST),
    )]

    days = compute_free_slots_range(db, psychologist.id, TARGET, sunday, busy, config=config)

    assert [d.date for d in days] == [TARGET, TARGET + timedelta(days=1), sunday]
    friday, saturday, sunday_day = days
    assert friday.available_slots == ['12:00']
    assert friday.booked_slots == ['09:00']
    assert friday.recurring_blocked_slots == ['10:00']
    assert friday.busy_slots == ['11:00']
    assert friday.total_slots == 4
    assert friday.external_events == 1
    assert saturday.is_available is False
    assert saturday.available_slots == []
    assert sunday_day.available_slots == []
    assert sunday_day.recurring_blocked_slots == ['09:00']


def test_range_with_end_before_start_is_empty(db, make_psychologist, config) -> None:
    psychologist = make_psychologist()

    assert compute_free_slots_range(db, psychologist.id, TARGET, TARGET - timedelta(days=1), config=config) == []


def test_fetch_busy_intervals_without_calendar(db, make_psychologist, calendar_client, config) -> None:
    psychologist = make_psychologist()

    assert fetch_busy_intervals(db, psychologist.id, TARGET, TARGET, calendar_client, config) == []
    assert calendar_client.calls == []


def test_fetch_busy_intervals_returns_blocking_intervals(db, make_psychologist, calendar_client, config) -> None:
    psychologist = make_psychologist(credentials={'access_token': 'a', 'refresh_token': 'r'})
    calendar_client.events = [
        {'start': '2025-01-10T10:00:00+05:30', 'end': '2025-01-10T11:00:00+05:30', 'title': 'Dentist'},
    ]

    intervals = fetch_busy_intervals(db, psychologist.id, TARGET, TARGET, calendar_client, config)

    assert len(intervals) == 1
    assert intervals[0].title == 'Dentist'


@pytest.mark.parametrize('error', [ProviderAuthError('invalid_grant'), TransientProviderError('503')])
def test_fetch_busy_intervals_degrades_on_calendar_failure(
    db, make_psychologist, calendar_client, config, error,
) -> None:
    psychologist = make_psychologist(credentials={'access_token': 'a', 'refresh_token': 'r'})
    calendar_client.error = error

    assert fetch_busy_intervals(db, psychologist.id, TARGET, TARGET, calendar_client, config) is None


def test_fetch_busy_intervals_skips_flagged_calendar(db, make_psychologist, calendar_client, config) -> None:
    psychologist = make_psychologist(credentials={'access_token': 'a'})
    psychologist.calendar_needs_reconnect = 1
    psychologist.google_calendar_credentials = json.dumps({'access_token': 'a'})
    db.commit()

    assert fetch_busy_intervals(db, psychologist.id, TARGET, TARGET, calendar_client, config) is None
    assert calendar_client.calls == []
