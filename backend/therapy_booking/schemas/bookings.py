# backend/therapy_booking/schemas/bookings.py

from datetime import date
from typing import Literal, Optional
from pydantic import BaseModel


BookingKind = Literal["therapy", "assessment"]


class BookingCreate(BaseModel):
    psychologist_id: int
    date: date
    time: str  # "17:00" or "5:00 PM"
    kind: BookingKind = "therapy"
    client_id: Optional[int] = None

    model_config = {"from_attributes": True}


class BookingReschedule(BaseModel):
    date: date
    time: str

    model_config = {"from_attributes": True}


class BookingRead(BaseModel):
    id: int
    kind: BookingKind

    psychologist_id: int
    client_id: Optional[int] = None

    scheduled_date: str
    scheduled_time: str

    status: str
    reminder_sent: bool

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}
