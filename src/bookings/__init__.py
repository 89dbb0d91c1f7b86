"""
Booking Module

Seat holds, payment conversion and reservations for intercity trips.
A passenger first places a short-lived hold on seats for a trip segment,
pays through the external processor, and the payment confirmation turns
the hold into a reservation exactly once.

- Seat holds with a time-to-live (capacity is not taken at hold time)
- Luggage fees and round-trip discounts in the hold price
- Idempotent, race-safe conversion of a paid hold into a reservation
- Driver reservation management, cancellation and walk-in bookings

Key Components:
- hold_service.py: Booking validation and the hold lifecycle
- conversion_service.py: Payment-to-reservation conversion
- reservation_service.py: Reservation lookups, status changes and stats
- references.py: Booking reference generation
- router.py: FastAPI endpoints for holds and reservations
- schemas.py: Pydantic models for request/response structures
"""

from .router import router
from .hold_service import HoldService, BookingValidator, is_hold_expired
from .conversion_service import ConversionService
from .reservation_service import ReservationService
from .references import generate_booking_reference
from .schemas import (
    HoldStatus, ReservationStatus, PassengerContact, SeatRequest, HoldCreate,
    RoundTripHoldCreate, HoldResponse, RoundTripHoldResponse, ConversionResult,
    ReservationResponse, DirectReservationCreate, DriverReservationStats
)

__all__ = [
    "router",
    "HoldService",
    "BookingValidator",
    "is_hold_expired",
    "ConversionService",
    "ReservationService",
    "generate_booking_reference",
    "HoldStatus",
    "ReservationStatus",
    "PassengerContact",
    "SeatRequest",
    "HoldCreate",
    "RoundTripHoldCreate",
    "HoldResponse",
    "RoundTripHoldResponse",
    "ConversionResult",
    "ReservationResponse",
    "DirectReservationCreate",
    "DriverReservationStats"
]
