# backend/therapy_booking/schemas/calendar_sync.py

from typing import Optional
from pydantic import BaseModel


class ProviderSyncResultRead(BaseModel):
    psychologist_id: int
    status: str
    removed_slots: int = 0
    updated_records: int = 0
    events: int = 0
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class SyncReportRead(BaseModel):
    skipped_running: bool
    synced: int
    skipped: int
    expired: int
    errors: int
    removed_slots: int
    results: list[ProviderSyncResultRead]

    model_config = {"from_attributes": True}
