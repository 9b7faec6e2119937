from .tables import (
    Base,
    CANCELLED_STATUS,
    AssessmentSessions,
    Availability,
    Psychologists,
    RecurringBlocks,
    Sessions,
    SlotClaims,
)

__all__ = [
    "Base",
    "CANCELLED_STATUS",
    "AssessmentSessions",
    "Availability",
    "Psychologists",
    "RecurringBlocks",
    "Sessions",
    "SlotClaims",
]
