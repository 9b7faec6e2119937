# backend/therapy_booking/routers/recurring_blocks.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import BookingError
from ..models import Psychologists
from ..schemas.recurring_blocks import RecurringBlockRead, RecurringBlockUpsert
from ..services.availability.recurring import delete_block, get_day_name, list_blocks, upsert_block
from .http_errors import to_http

router = APIRouter(prefix="/recurring-blocks", tags=["recurring-blocks"])


def _to_read(block) -> RecurringBlockRead:
    read = RecurringBlockRead.model_validate(block)
    read.day_name = get_day_name(block.day_of_week)
    return read


@router.get("/{psychologist_id}", response_model=list[RecurringBlockRead])
def get_recurring_blocks(psychologist_id: int, db: Session = Depends(get_db)):
    return [_to_read(block) for block in list_blocks(db, psychologist_id)]


@router.put("/{psychologist_id}/{day_of_week}", response_model=RecurringBlockRead)
def put_recurring_block(
    psychologist_id: int,
    day_of_week: int,
    data: RecurringBlockUpsert,
    db: Session = Depends(get_db),
):
    if not db.get(Psychologists, psychologist_id):
        raise HTTPException(status_code=404, detail="Psychologist not found")
    try:
        block = upsert_block(db, psychologist_id, day_of_week, data.block_entire_day, data.time_slots)
    except BookingError as e:
        raise to_http(e)
    return _to_read(block)


@router.delete("/{psychologist_id}/{day_of_week}", status_code=status.HTTP_204_NO_CONTENT)
def delete_recurring_block(psychologist_id: int, day_of_week: int, db: Session = Depends(get_db)):
    if not delete_block(db, psychologist_id, day_of_week):
        raise HTTPException(status_code=404, detail="Not found")
