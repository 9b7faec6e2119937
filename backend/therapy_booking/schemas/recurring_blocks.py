# backend/therapy_booking/schemas/recurring_blocks.py

import json
from pydantic import BaseModel, Field, field_validator


class RecurringBlockUpsert(BaseModel):
    block_entire_day: bool = False
    time_slots: list[str] = []

    model_config = {"from_attributes": True}


class RecurringBlockRead(BaseModel):
    psychologist_id: int
    day_of_week: int = Field(description="0 = Sunday ... 6 = Saturday")
    day_name: str = ""
    block_entire_day: bool
    time_slots: list[str]

    model_config = {"from_attributes": True}

    @field_validator("time_slots", mode="before")
    @classmethod
    def parse_time_slots(cls, v):
        # stored as JSON text
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v
