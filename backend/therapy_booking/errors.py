"""
Error taxonomy of the availability & booking engine.

Raised in services and translated to HTTP responses in routers.
"""


class BookingError(Exception):
    """Base exception for availability and reservation errors."""


class ValidationError(BookingError):
    """Malformed input (bad date, unknown booking kind, ...). Never retried."""


class NormalizationError(ValidationError):
    """A slot time string has no extractable HH:MM."""


class ConflictError(BookingError):
    """The requested slot is taken or no longer offered."""


class NotFoundError(BookingError):
    """Psychologist or booking does not exist."""


class DeadlineExceededError(BookingError):
    """The request deadline passed before the change was committed; nothing was written."""


class CalendarError(Exception):
    """Base exception for external calendar failures."""


class ProviderAuthError(CalendarError):
    """Refresh credential revoked or expired: the calendar must be reconnected."""


class TransientProviderError(CalendarError):
    """Network failure, rate limit or 5xx from the calendar provider."""
