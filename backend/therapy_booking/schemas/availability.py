# backend/therapy_booking/schemas/availability.py
"""
Pydantic schemas for availability API.
"""

from datetime import date
from pydantic import BaseModel, Field


class FreeSlotsResponse(BaseModel):
    """Free slots of one psychologist on one date."""
    psychologist_id: int
    date: date
    slots: list[str] = Field(description='Canonical "HH:MM" slot starts, chronological')
    calendar_checked: bool = Field(description="False when calendar busy time could not be included")

    model_config = {"from_attributes": True}


class DayAvailabilityRead(BaseModel):
    """Breakdown of a single stored date."""
    date: date
    is_available: bool
    available_slots: list[str]
    booked_slots: list[str]
    recurring_blocked_slots: list[str]
    busy_slots: list[str]
    total_slots: int
    external_events: int

    model_config = {"from_attributes": True}


class AvailabilityRangeResponse(BaseModel):
    psychologist_id: int
    start_date: date
    end_date: date
    days: list[DayAvailabilityRead]
    calendar_checked: bool

    model_config = {"from_attributes": True}


class AvailabilityUpdate(BaseModel):
    """Set candidate slots for a date ("5:00 PM", "17:00", ... accepted)."""
    psychologist_id: int
    date: date
    time_slots: list[str]
    is_available: bool = True

    model_config = {"from_attributes": True}


class AvailabilityRead(BaseModel):
    psychologist_id: int
    date: date
    time_slots: list[str]
    is_available: bool

    model_config = {"from_attributes": True}
