from pydantic import BaseModel, EmailStr, Field, validator
from typing import List, Optional, Dict, Literal
from datetime import datetime
from decimal import Decimal
from enum import Enum

class HoldStatus(str, Enum):
    """Temporary booking (hold) status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    EXPIRED = "expired"

class ReservationStatus(str, Enum):
    """Reservation status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

# Passenger Information
class PassengerContact(BaseModel):
    """Contact details captured with a booking"""
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    passenger_id: Optional[int] = None

    @validator('full_name', 'phone')
    def strip_contact_fields(cls, v):
        if not v.strip():
            raise ValueError('Must not be blank')
        return v.strip()

class SeatRequest(BaseModel):
    """Trip, stations, seats and bags for one leg"""
    trip_id: int
    pickup_station_id: int
    dropoff_station_id: int
    seats: List[str]
    number_of_bags: int = 0

# Holds
class HoldCreate(SeatRequest):
    passenger: PassengerContact

class RoundTripHoldCreate(BaseModel):
    outbound: SeatRequest
    return_leg: SeatRequest
    passenger: PassengerContact

class BookingPrice(BaseModel):
    """Price breakdown of one booking leg"""
    segment_price: Decimal
    seat_count: int
    seat_subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    luggage_fee: Decimal
    total_price: Decimal

class HoldResponse(BaseModel):
    id: str
    trip_id: int
    passenger_id: Optional[int] = None
    passenger_name: str
    passenger_email: str
    passenger_phone: str
    pickup_station_id: int
    dropoff_station_id: int
    selected_seats: List[str]
    number_of_bags: int
    segment_price: Decimal
    luggage_fee: Decimal
    total_price: Decimal
    booking_reference: str
    payment_intent_id: Optional[str] = None
    booking_group_id: Optional[str] = None
    status: HoldStatus
    failure_reason: Optional[str] = None
    expires_at: datetime
    created_at: Optional[datetime] = None
    is_expired: bool

class RoundTripHoldResponse(BaseModel):
    booking_group_id: str
    outbound: HoldResponse
    return_hold: HoldResponse
    discount_rate: Decimal
    total_price: Decimal

class PaymentIntentAttach(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)

class ConversionRequest(BaseModel):
    payment_intent_id: Optional[str] = None

class CleanupResult(BaseModel):
    deleted_holds: int
    cancelled_payments: int

# Reservations
class ReservationResponse(BaseModel):
    id: int
    trip_id: int
    passenger_id: Optional[int] = None
    pickup_station_id: int
    dropoff_station_id: int
    number_of_bags: int
    segment_price: Decimal
    luggage_fee: Decimal
    total_price: Decimal
    passenger_name: str
    passenger_email: str
    passenger_phone: str
    booking_reference: str
    temp_booking_id: Optional[str] = None
    booking_group_id: Optional[str] = None
    linked_reservation_id: Optional[int] = None
    status: ReservationStatus
    seats: List[str]
    created_at: Optional[datetime] = None

class ConversionResult(BaseModel):
    """Outcome of turning a paid hold into a reservation"""
    reservation: ReservationResponse
    already_processed: bool = False

class ReservationStatusUpdate(BaseModel):
    driver_id: int
    status: Literal["pending", "confirmed", "completed", "cancelled"]

class DirectReservationCreate(HoldCreate):
    """Walk-in booking entered by the driver"""
    driver_id: int

class DriverReservationStats(BaseModel):
    driver_id: int
    total_reservations: int
    by_status: Dict[str, int]
    total_revenue: Decimal
    total_passengers: int
