"""
Background Google Calendar sync.

Periodically pulls busy intervals of every psychologist with a connected
calendar and removes the slots they cover (and slots already booked) from
the stored availability rows.

- one tick at a time: a tick that finds the previous one still running is
  skipped, not queued
- per-psychologist cooldown: synced within the last N minutes → skipped
- psychologists are processed in small concurrent batches with a pause
  between batches to bound Google API load
- a failing psychologist never aborts the others

Scheduler state (running flag, last sync times) lives in memory only and
starts empty on every process start. A lost cooldown costs one extra sync.

Runs as an asyncio task in backend lifespan.
Uses synchronous DB and Google client (via asyncio.to_thread).
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from ..config import settings
from ..database import SessionLocal
from ..errors import CalendarError
from ..models import Psychologists
from .availability.busy_intervals import blocked_slot_times, resolve_busy_intervals
from .availability.config import BookingConfig, get_booking_config
from .availability.conflicts import BookingConflictChecker
from .availability.records import AvailabilityStore, candidate_slots
from .events import emit_event
from .google_calendar import get_calendar_client

logger = logging.getLogger(__name__)

SYNCED = "synced"
SKIPPED = "skipped"
EXPIRED = "expired"
ERROR = "error"
NOT_CONNECTED = "not_connected"


@dataclass
class ProviderSyncResult:
    psychologist_id: int
    status: str
    removed_slots: int = 0
    updated_records: int = 0
    events: int = 0
    error: str | None = None


@dataclass
class SyncReport:
    results: list[ProviderSyncResult] = field(default_factory=list)
    skipped_running: bool = False

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    def summary(self) -> dict:
        return {
            "synced": self.count(SYNCED),
            "skipped": self.count(SKIPPED),
            "expired": self.count(EXPIRED),
            "errors": self.count(ERROR),
            "removed_slots": sum(r.removed_slots for r in self.results),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalendarSyncScheduler:
    """Owns the sync loop and its in-memory state."""

    def __init__(
        self,
        session_factory=SessionLocal,
        client=None,
        booking_config: BookingConfig | None = None,
        clock=_utcnow,
        interval_minutes: int = settings.calendar_sync_interval_minutes,
        sync_days: int = settings.calendar_sync_days,
        cooldown_minutes: int = settings.calendar_sync_cooldown_minutes,
        concurrency: int = settings.calendar_sync_concurrency,
        batch_pause_seconds: float = settings.calendar_sync_batch_pause_seconds,
        startup_delay_seconds: float = settings.calendar_sync_startup_delay_seconds,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.session_factory = session_factory
        self._client = client
        self._booking_config = booking_config
        self.clock = clock
        self.interval = timedelta(minutes=interval_minutes)
        self.sync_days = sync_days
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.concurrency = concurrency
        self.batch_pause_seconds = batch_pause_seconds
        self.startup_delay_seconds = startup_delay_seconds

        self.is_running = False
        self.last_sync_times: dict[int, datetime] = {}
        self._tick_task: asyncio.Task | None = None

    @property
    def client(self):
        if self._client is None:
            self._client = get_calendar_client()
        return self._client

    @property
    def booking_config(self) -> BookingConfig:
        return self._booking_config or get_booking_config()

    # ── Tick ─────────────────────────────────────────────────────────────

    async def tick(self) -> SyncReport:
        """One sync pass over all connected psychologists."""
        if self.is_running:
            logger.info("Calendar sync tick skipped: previous tick still running")
            return SyncReport(skipped_running=True)

        self.is_running = True
        try:
            report = await self._run_tick()
        finally:
            self.is_running = False

        logger.info(f"Calendar sync tick finished: {report.summary()}")
        return report

    async def _run_tick(self) -> SyncReport:
        report = SyncReport()
        provider_ids = await asyncio.to_thread(self._connected_provider_ids)

        due = []
        for psychologist_id in provider_ids:
            if self.in_cooldown(psychologist_id):
                report.results.append(ProviderSyncResult(psychologist_id, SKIPPED))
            else:
                due.append(psychologist_id)

        for i in range(0, len(due), self.concurrency):
            batch = due[i:i + self.concurrency]
            results = await asyncio.gather(*(self.sync_provider(pid) for pid in batch))
            report.results.extend(results)
            if i + self.concurrency < len(due):
                await asyncio.sleep(self.batch_pause_seconds)

        return report

    def in_cooldown(self, psychologist_id: int) -> bool:
        last = self.last_sync_times.get(psychologist_id)
        return last is not None and self.clock() - last < self.cooldown

    def _connected_provider_ids(self) -> list[int]:
        db = self.session_factory()
        try:
            rows = (
                db.query(Psychologists.id)
                .filter(
                    Psychologists.google_calendar_credentials.isnot(None),
                    Psychologists.calendar_needs_reconnect == 0,
                )
                .order_by(Psychologists.id)
                .all()
            )
            return [row.id for row in rows]
        finally:
            db.close()

    # ── Per-psychologist routine ─────────────────────────────────────────

    async def sync_provider(self, psychologist_id: int) -> ProviderSyncResult:
        """
        Sync one psychologist. Used by tick() and the manual trigger alike.

        Never raises: failures come back as status=error.
        """
        try:
            result = await asyncio.to_thread(self._sync_provider_blocking, psychologist_id)
        except Exception as e:
            logger.exception(f"Calendar sync failed for psychologist {psychologist_id}")
            return ProviderSyncResult(psychologist_id, ERROR, error=str(e))

        if result.status in (SYNCED, EXPIRED):
            self.last_sync_times[psychologist_id] = self.clock()
        return result

    def _sync_provider_blocking(self, psychologist_id: int) -> ProviderSyncResult:
        config = self.booking_config
        db = self.session_factory()
        try:
            psychologist = db.get(Psychologists, psychologist_id)
            if not psychologist or not psychologist.google_calendar_credentials:
                return ProviderSyncResult(psychologist_id, NOT_CONNECTED)

            try:
                credentials = json.loads(psychologist.google_calendar_credentials)
            except json.JSONDecodeError:
                logger.error(f"Malformed calendar credentials for psychologist {psychologist_id}")
                return ProviderSyncResult(psychologist_id, ERROR, error="malformed credentials")

            start_date = config.today(self.clock())
            end_date = start_date + timedelta(days=self.sync_days)

            try:
                resolution = resolve_busy_intervals(
                    credentials, start_date, end_date, self.client, config
                )
            except CalendarError as e:
                logger.warning(f"Calendar sync abandoned for psychologist {psychologist_id}: {e}")
                return ProviderSyncResult(psychologist_id, ERROR, error=str(e))

            if resolution.connection_expired:
                psychologist.calendar_needs_reconnect = 1
                db.commit()
                logger.warning(f"Psychologist {psychologist_id} flagged for calendar reconnection")
                emit_event("calendar_connection_expired", {"psychologist_id": psychologist_id})
                return ProviderSyncResult(psychologist_id, EXPIRED)

            removed, updated = self._reconcile_records(
                db, psychologist_id, start_date, end_date, resolution.intervals, config
            )

            if resolution.credentials and resolution.credentials != credentials:
                psychologist.google_calendar_credentials = json.dumps(resolution.credentials)
            if psychologist.calendar_needs_reconnect:
                psychologist.calendar_needs_reconnect = 0

            # all record changes of this psychologist land in one commit
            db.commit()

            logger.info(
                f"Calendar sync psychologist={psychologist_id}: "
                f"{len(resolution.intervals)} busy interval(s), "
                f"{removed} slot(s) removed from {updated} date(s)"
            )
            return ProviderSyncResult(
                psychologist_id,
                SYNCED,
                removed_slots=removed,
                updated_records=updated,
                events=len(resolution.intervals),
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _reconcile_records(
        self,
        db,
        psychologist_id: int,
        start_date: date,
        end_date: date,
        intervals,
        config: BookingConfig,
    ) -> tuple[int, int]:
        """Strip busy and booked slots from stored rows (not committed)."""
        store = AvailabilityStore(db)
        records = store.get_records(psychologist_id, start_date, end_date)
        if not records:
            return 0, 0

        booked_by_date = BookingConflictChecker(db).booked_times_by_date(
            psychologist_id, start_date, end_date
        )

        removed_total = 0
        updated = 0
        for record in records:
            target_date = date.fromisoformat(record.date)
            candidates = candidate_slots(record)
            to_remove = blocked_slot_times(candidates, target_date, intervals, config)
            to_remove |= booked_by_date.get(target_date, set()) & set(candidates)
            if not to_remove:
                continue
            removed = store.remove_times(record, to_remove)
            if removed:
                removed_total += len(removed)
                updated += 1
        return removed_total, updated

    # ── Triggers ─────────────────────────────────────────────────────────

    async def trigger(self, psychologist_id: int | None = None) -> SyncReport:
        """Manual sync: one psychologist (ignores cooldown) or a full tick."""
        if psychologist_id is None:
            return await self.tick()
        result = await self.sync_provider(psychologist_id)
        return SyncReport(results=[result])

    async def run_forever(self) -> None:
        """
        Periodic loop: start a tick every interval.

        Ticks run as separate tasks so a slow tick makes the next one hit
        the running flag instead of delaying the schedule.
        """
        logger.info("calendar_sync_loop started")

        try:
            await asyncio.sleep(self.startup_delay_seconds)
            while True:
                self._tick_task = asyncio.create_task(self.tick())
                self._tick_task.add_done_callback(_log_tick_failure)
                await asyncio.sleep(self.interval.total_seconds())
        except asyncio.CancelledError:
            logger.info("calendar_sync_loop cancelled")
            if self._tick_task and not self._tick_task.done():
                self._tick_task.cancel()


def _log_tick_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"calendar sync tick error: {error!r}")


calendar_sync_scheduler = CalendarSyncScheduler()


def get_scheduler() -> CalendarSyncScheduler:
    """FastAPI dependency."""
    return calendar_sync_scheduler
