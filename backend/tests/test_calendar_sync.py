import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import pytest

from therapy_booking.errors import ProviderAuthError, TransientProviderError
from therapy_booking.models import Psychologists, Sessions
from therapy_booking.services.calendar_sync import (
    ERROR,
    EXPIRED,
    NOT_CONNECTED,
    SKIPPED,
    SYNCED,
    CalendarSyncScheduler,
)

TODAY = date(2025, 1, 10)
TOMORROW = date(2025, 1, 11)


class Clock:
    def __init__(self) -> None:
        # 08:30 on 2025-01-10 in Asia/Kolkata
        self.now = datetime(2025, 1, 10, 3, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def scheduler(session_factory, calendar_client, config, clock) -> CalendarSyncScheduler:
    return CalendarSyncScheduler(
        session_factory=session_factory,
        client=calendar_client,
        booking_config=config,
        clock=clock,
        sync_days=30,
        cooldown_minutes=5,
        concurrency=3,
        batch_pause_seconds=0,
    )


@pytest.fixture
def connected(make_psychologist, add_availability):
    def _connected(token: str = 'token-a', name: str = 'Asha') -> Psychologists:
        obj = make_psychologist(credentials={'access_token': token, 'refresh_token': 'r'}, first_name=name)
        add_availability(obj.id, TODAY, ['9:00 AM', '10:00', '11:00', '20:00', '21:00'])
        add_availability(obj.id, TOMORROW, ['05:00', '07:00', '09:00'])
        return obj

    return _connected


OVERNIGHT = {'start': '2025-01-10T20:00:00+05:30', 'end': '2025-01-11T06:00:00+05:30', 'title': 'Travel'}
MORNING = {'start': '2025-01-10T09:30:00+05:30', 'end': '2025-01-10T10:00:00+05:30', 'title': 'Dentist'}
HOLIDAY = {'start': '2025-01-10', 'end': '2025-01-11', 'title': 'Public Holiday'}


async def test_sync_provider_strips_busy_and_booked_slots(
    db, scheduler, calendar_client, connected, stored_slots,
) -> None:
    psychologist = connected()
    db.add(Sessions(psychologist_id=psychologist.id, scheduled_date='2025-01-10', scheduled_time='11:00'))
    db.commit()
    calendar_client.events = [OVERNIGHT, MORNING, HOLIDAY]

    result = await scheduler.sync_provider(psychologist.id)

    assert result.status == SYNCED
    assert result.removed_slots == 5
    assert result.updated_records == 2
    assert stored_slots(psychologist.id, TODAY) == ['10:00']
    assert stored_slots(psychologist.id, TOMORROW) == ['07:00', '09:00']
    assert psychologist.id in scheduler.last_sync_times


async def test_sync_window_starts_today_in_local_time(scheduler, calendar_client, connected, config) -> None:
    psychologist = connected()

    await scheduler.sync_provider(psychologist.id)

    _, time_min, time_max = calendar_client.calls[0]
    assert time_min == config.day_start(TODAY)
    assert time_max == config.day_start(TODAY + timedelta(days=31)) + config.slot_duration


async def test_tick_honours_cooldown(scheduler, calendar_client, connected, clock) -> None:
    connected()

    first = await scheduler.tick()
    clock.advance(4)
    second = await scheduler.tick()
    clock.advance(2)
    third = await scheduler.tick()

    assert [r.status for r in first.results] == [SYNCED]
    assert [r.status for r in second.results] == [SKIPPED]
    assert [r.status for r in third.results] == [SYNCED]
    assert len(calendar_client.calls) == 2


async def test_tick_is_skipped_while_previous_tick_runs(scheduler, calendar_client, connected) -> None:
    connected()

    first, second = await asyncio.gather(scheduler.tick(), scheduler.tick())

    assert first.skipped_running is False
    assert second.skipped_running is True
    assert second.results == []
    assert len(calendar_client.calls) == 1
    assert scheduler.is_running is False


async def test_expired_provider_does_not_abort_the_batch(
    db, scheduler, calendar_client, connected, fake_redis,
) -> None:
    expired = connected(token='revoked', name='Asha')
    healthy = connected(token='fine', name='Ravi')
    broken = connected(token='flaky', name='Meera')
    calendar_client.by_token['revoked'] = ProviderAuthError('invalid_grant')
    calendar_client.by_token['flaky'] = TransientProviderError('503')
    calendar_client.events = [MORNING]

    report = await scheduler.tick()

    statuses = {r.psychologist_id: r.status for r in report.results}
    assert statuses == {expired.id: EXPIRED, healthy.id: SYNCED, broken.id: ERROR}
    assert report.summary()['synced'] == 1
    db.expire_all()
    assert db.get(Psychologists, expired.id).calendar_needs_reconnect == 1
    assert fake_redis.events('calendar_connection_expired')[0]['psychologist_id'] == expired.id
    # transient failures are retried on the next tick
    assert broken.id not in scheduler.last_sync_times


async def test_flagged_providers_are_left_out_of_ticks(db, scheduler, calendar_client, connected) -> None:
    psychologist = connected()
    psychologist.calendar_needs_reconnect = 1
    db.commit()

    report = await scheduler.tick()

    assert report.results == []
    assert calendar_client.calls == []


async def test_refreshed_credentials_are_persisted(db, scheduler, calendar_client, connected) -> None:
    psychologist = connected()
    calendar_client.refreshed = {'access_token': 'new-token', 'refresh_token': 'r'}

    await scheduler.sync_provider(psychologist.id)

    db.expire_all()
    stored = json.loads(db.get(Psychologists, psychologist.id).google_calendar_credentials)
    assert stored['access_token'] == 'new-token'


async def test_batches_cover_every_provider(scheduler, calendar_client, connected) -> None:
    scheduler.concurrency = 2
    ids = [connected(token=f't{i}', name=f'P{i}').id for i in range(5)]

    report = await scheduler.tick()

    assert sorted(r.psychologist_id for r in report.results) == ids
    assert report.summary()['synced'] == 5


async def test_manual_trigger_ignores_cooldown(scheduler, calendar_client, connected) -> None:
    psychologist = connected()
    await scheduler.tick()

    report = await scheduler.trigger(psychologist.id)

    assert [r.status for r in report.results] == [SYNCED]
    assert len(calendar_client.calls) == 2


async def test_manual_trigger_for_unconnected_psychologist(scheduler, make_psychologist) -> None:
    psychologist = make_psychologist()

    report = await scheduler.trigger(psychologist.id)

    assert [r.status for r in report.results] == [NOT_CONNECTED]


async def test_trigger_without_psychologist_runs_a_tick(scheduler, connected) -> None:
    connected()

    report = await scheduler.trigger()

    assert report.summary()['synced'] == 1


async def test_run_forever_stops_on_cancel(scheduler) -> None:
    scheduler.startup_delay_seconds = 0
    scheduler.interval = timedelta(seconds=0.01)

    task = asyncio.create_task(scheduler.run_forever())
    await asyncio.sleep(0.05)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert task.done()
