# backend/therapy_booking/routers/http_errors.py

from fastapi import HTTPException, status

from ..errors import BookingError, ConflictError, DeadlineExceededError, NotFoundError, ValidationError


def to_http(error: BookingError) -> HTTPException:
    """Map a service error to the response a client can act on."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, DeadlineExceededError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
