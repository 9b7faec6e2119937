"""
Slot time normalization.

Stored availability lists and booking rows carry mixed representations
("5:00 PM", "5:00PM", "17:00", "17:00:00", "17:00-18:00"). Everything past
this module compares canonical "HH:MM" strings only.
"""

import logging
import re
from datetime import time

from ...errors import NormalizationError

logger = logging.getLogger(__name__)

_AMPM_RE = re.compile(r"(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp])\.?[Mm](?![A-Za-z])")
_PERIOD_RE = re.compile(r"(?<![A-Za-z])[AaPp]\.?[Mm](?![A-Za-z])")
_HHMM_RE = re.compile(r"(\d{1,2}):(\d{2})")
_RANGE_SPLIT_RE = re.compile(r"\s*[-–—]\s*")


def normalize_time(raw) -> str:
    """
    Convert a slot time to canonical "HH:MM" (24-hour, zero-padded).

    Ranges keep their start ("17:00-18:00" -> "17:00"). Surrounding text is
    ignored ("5:00 PM IST" -> "17:00"); an AM/PM marker is never dropped.

    Raises:
        NormalizationError: no HH:MM can be extracted, or the value is out of range
    """
    if isinstance(raw, time):
        return f"{raw.hour:02d}:{raw.minute:02d}"
    if raw is None:
        raise NormalizationError("Time is required")

    value = str(raw).strip()
    if not value:
        raise NormalizationError("Time is required")

    # "17:00-18:00" / "5:00 PM - 6:00 PM": only the start matters
    head = _RANGE_SPLIT_RE.split(value, maxsplit=1)[0]
    if ":" in head:
        value = head

    ampm = _AMPM_RE.search(value)
    if not ampm and _PERIOD_RE.search(value):
        # "PM 5:00", "5 PM": a period we cannot attach to an HH:MM
        raise NormalizationError(f"Cannot parse 12-hour time: {raw!r}")

    if ampm:
        hour = int(ampm.group(1))
        minute = int(ampm.group(2))
        period = ampm.group(3).upper()
        if not 1 <= hour <= 12:
            raise NormalizationError(f"Invalid 12-hour time: {raw!r}")
        if period == "P" and hour != 12:
            hour += 12
        elif period == "A" and hour == 12:
            hour = 0
    else:
        match = _HHMM_RE.search(value)
        if not match:
            raise NormalizationError(f"Cannot parse time: {raw!r}")
        hour = int(match.group(1))
        minute = int(match.group(2))

    if hour > 23 or minute > 59:
        raise NormalizationError(f"Time out of range: {raw!r}")

    return f"{hour:02d}:{minute:02d}"


def try_normalize_time(raw) -> str | None:
    """normalize_time for legacy stored data: None instead of an error."""
    try:
        return normalize_time(raw)
    except NormalizationError:
        logger.warning(f"Dropping unparseable slot time: {raw!r}")
        return None


def format_12h(canonical_time: str) -> str:
    """Render "17:00" as "5:00 PM" (display format of default slots)."""
    hour, minute = (int(part) for part in normalize_time(canonical_time).split(":"))
    period = "AM" if hour < 12 else "PM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d} {period}"
