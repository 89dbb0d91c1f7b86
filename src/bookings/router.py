from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from src.database import get_db
from src.bookings.schemas import (
    HoldCreate, RoundTripHoldCreate, HoldResponse, RoundTripHoldResponse,
    PaymentIntentAttach, ConversionRequest, ConversionResult, CleanupResult,
    ReservationResponse, ReservationStatusUpdate, DirectReservationCreate,
    DriverReservationStats
)
from src.bookings.hold_service import HoldService
from src.bookings.conversion_service import ConversionService
from src.bookings.reservation_service import ReservationService, reservation_response
from src.exceptions import BookingError, to_http_exception

router = APIRouter()

# Hold Endpoints
@router.post("/holds", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
def create_hold(request: HoldCreate, db: Session = Depends(get_db)):
    """Hold seats on a trip segment while the passenger pays"""
    try:
        return HoldService(db).create_hold(request)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("/holds/round-trip", response_model=RoundTripHoldResponse, status_code=status.HTTP_201_CREATED)
def create_round_trip_hold(request: RoundTripHoldCreate, db: Session = Depends(get_db)):
    """Hold seats on a trip and its linked return trip"""
    try:
        return HoldService(db).create_round_trip_hold(request)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("/holds/cleanup", response_model=CleanupResult)
def cleanup_expired_holds(db: Session = Depends(get_db)):
    """Delete expired holds and cancel their pending payments"""
    return HoldService(db).cleanup_expired_holds()

@router.get("/holds/{hold_id}", response_model=HoldResponse)
def get_hold(hold_id: str, db: Session = Depends(get_db)):
    """Get a hold and whether it has expired"""
    hold = HoldService(db).get_hold(hold_id)
    if not hold:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Hold not found"
        )
    return hold

@router.post("/holds/{hold_id}/payment-intent", response_model=HoldResponse)
def attach_payment_intent(hold_id: str, request: PaymentIntentAttach, db: Session = Depends(get_db)):
    """Attach the processor's payment intent to a hold"""
    try:
        return HoldService(db).attach_payment_intent(hold_id, request.payment_intent_id)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("/holds/groups/{booking_group_id}/payment-intent", response_model=List[HoldResponse])
def attach_group_payment_intent(booking_group_id: str, request: PaymentIntentAttach, db: Session = Depends(get_db)):
    """Attach one payment intent to both holds of a round trip"""
    try:
        return HoldService(db).attach_payment_intent_to_group(booking_group_id, request.payment_intent_id)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("/holds/{hold_id}/abandon", response_model=HoldResponse)
def abandon_hold(hold_id: str, db: Session = Depends(get_db)):
    """Give up a hold before paying"""
    try:
        return HoldService(db).abandon_hold(hold_id)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("/holds/{hold_id}/convert", response_model=ConversionResult)
def convert_hold(hold_id: str, request: ConversionRequest, db: Session = Depends(get_db)):
    """Convert a paid hold into a reservation"""
    try:
        return ConversionService(db).convert_hold(hold_id, request.payment_intent_id)
    except BookingError as e:
        raise to_http_exception(e)

# Reservation Endpoints
@router.post("/reservations/direct", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_direct_reservation(request: DirectReservationCreate, db: Session = Depends(get_db)):
    """Record a walk-in booking made by the driver"""
    try:
        return reservation_response(ReservationService(db).create_direct_reservation(request))
    except BookingError as e:
        raise to_http_exception(e)

@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
def get_reservation(reservation_id: int, db: Session = Depends(get_db)):
    """Get reservation details"""
    reservation = ReservationService(db).get_reservation(reservation_id)
    if not reservation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reservation not found"
        )
    return reservation_response(reservation)

@router.get("/reference/{booking_reference}", response_model=ReservationResponse)
def get_reservation_by_reference(booking_reference: str, db: Session = Depends(get_db)):
    """Get a reservation by its booking reference"""
    reservation = ReservationService(db).get_by_reference(booking_reference)
    if not reservation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reservation not found"
        )
    return reservation_response(reservation)

@router.patch("/reservations/{reservation_id}/status", response_model=ReservationResponse)
def update_reservation_status(
    reservation_id: int,
    update: ReservationStatusUpdate,
    db: Session = Depends(get_db)
):
    """Change a reservation's status"""
    try:
        reservation = ReservationService(db).update_status(reservation_id, update.status, update.driver_id)
    except BookingError as e:
        raise to_http_exception(e)
    return reservation_response(reservation)

@router.get("/trips/{trip_id}/reservations", response_model=List[ReservationResponse])
def get_trip_reservations(trip_id: int, driver_id: int, db: Session = Depends(get_db)):
    """List reservations on one of the driver's trips"""
    try:
        reservations = ReservationService(db).get_trip_reservations(trip_id, driver_id)
    except BookingError as e:
        raise to_http_exception(e)
    return [reservation_response(r) for r in reservations]

@router.get("/drivers/{driver_id}/stats", response_model=DriverReservationStats)
def get_driver_stats(driver_id: int, db: Session = Depends(get_db)):
    """Reservation counts, revenue and passengers for a driver"""
    return ReservationService(db).get_driver_stats(driver_id)
