# backend/therapy_booking/services/availability/recurring.py
"""
Recurring weekly blocks (e.g. "never on Sundays", "never 09:00 on Mondays").

A block is a rule, evaluated freshly for every date it is asked about.
It is never written into availability records, so deleting a block
restores the default slots of that weekday for every future date.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy.orm import Session

from ...errors import ValidationError
from ...models import RecurringBlocks
from .time_normalizer import normalize_time, try_normalize_time

logger = logging.getLogger(__name__)

DAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@dataclass(frozen=True)
class RecurringRule:
    day_of_week: int
    block_entire_day: bool
    time_slots: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: RecurringBlocks) -> "RecurringRule":
        slots = _load_slots(row.time_slots)
        canonical = tuple(t for t in (try_normalize_time(s) for s in slots) if t)
        return cls(
            day_of_week=row.day_of_week,
            block_entire_day=bool(row.block_entire_day),
            time_slots=canonical,
        )


def day_of_week(target_date: date | str) -> int:
    """
    Weekday of a calendar date, 0 = Sunday ... 6 = Saturday.

    Evaluated at local noon so no timezone shift can move it to a neighbour day.
    """
    if isinstance(target_date, str):
        target_date = date.fromisoformat(target_date)
    noon = datetime.combine(target_date, time(12, 0))
    return noon.isoweekday() % 7


def get_day_name(dow: int) -> str:
    return DAYS[dow] if 0 <= dow < len(DAYS) else ""


def is_blocked(rules: list[RecurringRule], target_date: date | str, slot_time) -> bool:
    """Check whether slot_time on target_date falls under a recurring block."""
    if not rules:
        return False
    dow = day_of_week(target_date)
    rule = next((r for r in rules if r.day_of_week == dow), None)
    if rule is None:
        return False
    if rule.block_entire_day:
        return True
    normalized = try_normalize_time(slot_time)
    if normalized is None:
        return False
    return normalized in rule.time_slots


def filter_slots(slot_times: list[str], target_date: date | str, rules: list[RecurringRule]) -> list[str]:
    """Drop the slots blocked by recurring rules for target_date."""
    if not rules:
        return list(slot_times)
    return [t for t in slot_times if not is_blocked(rules, target_date, t)]


# ── Store ────────────────────────────────────────────────────────────────


def load_recurring_rules(db: Session, psychologist_id: int) -> list[RecurringRule]:
    rows = (
        db.query(RecurringBlocks)
        .filter(RecurringBlocks.psychologist_id == psychologist_id)
        .all()
    )
    return [RecurringRule.from_row(row) for row in rows]


def list_blocks(db: Session, psychologist_id: int) -> list[RecurringBlocks]:
    return (
        db.query(RecurringBlocks)
        .filter(RecurringBlocks.psychologist_id == psychologist_id)
        .order_by(RecurringBlocks.day_of_week)
        .all()
    )


def upsert_block(
    db: Session,
    psychologist_id: int,
    dow: int,
    block_entire_day: bool,
    time_slots: list[str] | None = None,
) -> RecurringBlocks:
    """
    Create or replace the block for (psychologist, weekday).

    Raises:
        ValidationError: weekday out of range, bad slot time, or an empty
            partial block
    """
    if not 0 <= dow <= 6:
        raise ValidationError(f"day_of_week must be 0..6, got {dow}")

    canonical = sorted({normalize_time(s) for s in (time_slots or [])})
    if not block_entire_day and not canonical:
        raise ValidationError("time_slots are required unless block_entire_day is set")

    block = (
        db.query(RecurringBlocks)
        .filter(
            RecurringBlocks.psychologist_id == psychologist_id,
            RecurringBlocks.day_of_week == dow,
        )
        .first()
    )
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    if block:
        block.block_entire_day = int(block_entire_day)
        block.time_slots = json.dumps([] if block_entire_day else canonical)
        block.updated_at = now
    else:
        block = RecurringBlocks(
            psychologist_id=psychologist_id,
            day_of_week=dow,
            block_entire_day=int(block_entire_day),
            time_slots=json.dumps([] if block_entire_day else canonical),
            created_at=now,
            updated_at=now,
        )
        db.add(block)

    db.commit()
    db.refresh(block)

    logger.info(
        f"Recurring block saved: psychologist={psychologist_id} "
        f"day={get_day_name(dow)} entire_day={block_entire_day} slots={canonical}"
    )
    return block


def delete_block(db: Session, psychologist_id: int, dow: int) -> bool:
    """Delete the block for (psychologist, weekday). Returns False if none existed."""
    block = (
        db.query(RecurringBlocks)
        .filter(
            RecurringBlocks.psychologist_id == psychologist_id,
            RecurringBlocks.day_of_week == dow,
        )
        .first()
    )
    if not block:
        return False

    db.delete(block)
    db.commit()
    logger.info(f"Recurring block removed: psychologist={psychologist_id} day={get_day_name(dow)}")
    return True


def _load_slots(raw) -> list:
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw) if raw else []
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []
