# backend/therapy_booking/routers/calendar_sync.py
"""
Manual calendar sync.

POST /calendar-sync                   - Full pass (same as a scheduled tick)
POST /calendar-sync/{psychologist_id} - One psychologist, cooldown ignored
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import Psychologists
from ..schemas.calendar_sync import ProviderSyncResultRead, SyncReportRead
from ..services.calendar_sync import CalendarSyncScheduler, SyncReport, get_scheduler

router = APIRouter(prefix="/calendar-sync", tags=["calendar-sync"])


def _to_read(report: SyncReport) -> SyncReportRead:
    return SyncReportRead(
        skipped_running=report.skipped_running,
        results=[ProviderSyncResultRead.model_validate(r) for r in report.results],
        **report.summary(),
    )


@router.post("/", response_model=SyncReportRead)
async def trigger_full_sync(scheduler: CalendarSyncScheduler = Depends(get_scheduler)):
    return _to_read(await scheduler.trigger())


@router.post("/{psychologist_id}", response_model=SyncReportRead)
async def trigger_psychologist_sync(
    psychologist_id: int,
    db: Session = Depends(get_db),
    scheduler: CalendarSyncScheduler = Depends(get_scheduler),
):
    if not db.get(Psychologists, psychologist_id):
        raise HTTPException(status_code=404, detail="Psychologist not found")
    return _to_read(await scheduler.trigger(psychologist_id))
