"""
backend/therapy_booking/services/events.py

Event emitter: pushes events to the Redis queue consumed by the
notification workers (email / WhatsApp delivery lives there).

Queue:
- events:p2p: instant delivery (booking and calendar notifications)
"""

import json
import time
import logging

from ..redis_client import redis_client

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"


def emit_event(event_type: str, payload: dict) -> None:
    """
    Emit a p2p event (instant delivery). Best-effort: failures are logged.

    Pushed to Redis list `events:p2p` for the consumer loop.
    """
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis_client.rpush(P2P_QUEUE, json.dumps(event))
        logger.info(f"Event emitted: {event_type} → {P2P_QUEUE}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")


def booking_payload(kind: str, booking) -> dict:
    return {
        "booking_kind": kind,
        "booking_id": booking.id,
        "psychologist_id": booking.psychologist_id,
        "client_id": booking.client_id,
        "date": booking.scheduled_date,
        "time": booking.scheduled_time,
        "status": booking.status,
    }
