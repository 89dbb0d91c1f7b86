"""
Domain errors for pricing, search and booking.

All of them are ValueError subclasses so that callers which only care about
"bad request" can keep catching ValueError. Routers inspect the concrete type
to choose between 400, 404 and 409.
"""

from typing import Optional

from fastapi import HTTPException, status


class BookingError(ValueError):
    error_code = "BOOKING_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_detail(self) -> dict:
        detail = {"code": self.error_code, "message": self.message}
        if self.reason:
            detail["reason"] = self.reason
        return detail


# Validation errors

class InvalidSegmentError(BookingError):
    error_code = "INVALID_SEGMENT"


class SearchValidationError(BookingError):
    """Collects every issue found in a search request"""
    error_code = "INVALID_SEARCH"

    def __init__(self, issues: list):
        self.issues = issues
        super().__init__("; ".join(issue.error_message for issue in issues))

    def to_detail(self) -> dict:
        return {
            "code": self.issues[0].error_code if self.issues else self.error_code,
            "message": "Search request validation failed",
            "errors": [
                {
                    "code": issue.error_code,
                    "message": issue.error_message,
                    "field": issue.field
                }
                for issue in self.issues
            ]
        }


class StationNotOnTripError(BookingError):
    error_code = "STATION_NOT_ON_TRIP"


class SeatSelectionError(BookingError):
    error_code = "INVALID_SEAT_SELECTION"


class LuggageLimitExceededError(BookingError):
    error_code = "LUGGAGE_LIMIT_EXCEEDED"


class TripNotBookableError(BookingError):
    error_code = "TRIP_NOT_BOOKABLE"


class InvalidDiscountError(BookingError):
    error_code = "INVALID_DISCOUNT"


class InvalidStatusTransitionError(BookingError):
    error_code = "INVALID_STATUS_TRANSITION"


class PaymentMismatchError(BookingError):
    error_code = "PAYMENT_MISMATCH"


class AccessDeniedError(BookingError):
    error_code = "ACCESS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


# Lookup errors

class NotFoundError(BookingError):
    error_code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class HoldNotFoundError(NotFoundError):
    error_code = "HOLD_NOT_FOUND"


# Conversion failures (payment taken, booking not made)

class HoldExpiredError(BookingError):
    error_code = "HOLD_EXPIRED"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Booking hold has expired"):
        super().__init__(message, reason="expired")


class CapacityConflictError(BookingError):
    error_code = "CAPACITY_CONFLICT"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Not enough seats left on this trip", reason: str = "capacity_conflict"):
        super().__init__(message, reason=reason)


class SeatConflictError(CapacityConflictError):
    error_code = "SEAT_CONFLICT"

    def __init__(self, message: str = "One or more selected seats are already booked"):
        super().__init__(message, reason="seat_conflict")


def to_http_exception(exc: BookingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
