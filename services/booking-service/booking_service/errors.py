"""
Booking domain errors.

Every error carries a human message, a stable code and a details dict so the
HTTP layer can tell the caller which resource or interval caused the failure.
"""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class BookingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT


class BookingExpiredError(BookingError):
    status_code = status.HTTP_410_GONE

    def __init__(self, booking_id: str) -> None:
        super().__init__(
            "Booking has expired; please start a new booking",
            code="booking_expired",
            details={"booking_id": booking_id},
        )


class InvalidStateError(BookingError):
    status_code = status.HTTP_409_CONFLICT


class ValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class CatalogUnavailable(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class QRCodeError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})
