from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from decimal import Decimal

from src.database import get_db
from src.exceptions import BookingError, to_http_exception
from src.trips.schemas import (
    TripSearchRequest, TripSearchResult, RoundTripOffer, TripBookingDetails,
    TripCreate, TripBatchCreate, TripResponse, TripStatusUpdate, ReturnTripLink
)
from src.trips.service import TripService
from src.trips.search_service import TripSearchService

router = APIRouter()

@router.get("/search", response_model=List[TripSearchResult])
def search_trips(
    from_city: str = Query(..., description="Origin city"),
    to_city: str = Query(..., description="Destination city"),
    departure_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    min_seats: int = Query(1),
    max_price: Optional[Decimal] = Query(None),
    sort_by: str = Query("departure", description="price, departure, duration or rating"),
    date_basis: str = Query("utc", description="utc or destination"),
    db: Session = Depends(get_db)
):
    """Search scheduled trips for a city-to-city segment"""
    request = TripSearchRequest(
        from_city=from_city,
        to_city=to_city,
        departure_date=departure_date,
        min_seats=min_seats,
        max_price=max_price,
        sort_by=sort_by,
        date_basis=date_basis
    )
    try:
        return TripSearchService(db).search(request)
    except BookingError as e:
        raise to_http_exception(e)

@router.get("/search/round-trip", response_model=List[RoundTripOffer])
def search_round_trips(
    from_city: str = Query(...),
    to_city: str = Query(...),
    departure_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    return_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    min_seats: int = Query(1),
    max_price: Optional[Decimal] = Query(None),
    sort_by: str = Query("departure"),
    date_basis: str = Query("utc"),
    db: Session = Depends(get_db)
):
    """Search outbound trips that come with a discounted return trip"""
    request = TripSearchRequest(
        from_city=from_city,
        to_city=to_city,
        departure_date=departure_date,
        min_seats=min_seats,
        max_price=max_price,
        sort_by=sort_by,
        date_basis=date_basis
    )
    try:
        return TripSearchService(db).search_round_trips(request, return_date)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
def schedule_trip(trip_data: TripCreate, db: Session = Depends(get_db)):
    """Schedule a trip on one of the driver's route templates"""
    try:
        return TripService(db).schedule_trip(trip_data)
    except BookingError as e:
        raise to_http_exception(e)

@router.post("/batch", response_model=List[TripResponse], status_code=status.HTTP_201_CREATED)
def schedule_trips(batch: TripBatchCreate, db: Session = Depends(get_db)):
    """Schedule several trips at once; nothing is created if any trip is invalid"""
    try:
        return TripService(db).schedule_trips(batch)
    except BookingError as e:
        raise to_http_exception(e)

@router.delete("/{trip_id}")
def delete_trip(
    trip_id: int,
    driver_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """Delete a trip with no reservations or open holds"""
    try:
        TripService(db).delete_trip(trip_id, driver_id)
    except BookingError as e:
        raise to_http_exception(e)
    return {"message": "Trip deleted successfully"}

@router.get("/{trip_id}/booking-details", response_model=TripBookingDetails)
def get_trip_for_booking(trip_id: int, db: Session = Depends(get_db)):
    """Get trip details, booked seats and fares for the booking screen"""
    try:
        return TripService(db).get_trip_for_booking(trip_id)
    except BookingError as e:
        raise to_http_exception(e)

@router.get("/{trip_id}/round-trip-offer", response_model=RoundTripOffer)
def get_round_trip_offer(
    trip_id: int,
    from_city: str = Query(...),
    to_city: str = Query(...),
    seats: int = Query(1, ge=1),
    db: Session = Depends(get_db)
):
    """Price a trip together with its linked return trip"""
    try:
        return TripSearchService(db).compose_round_trip(trip_id, from_city, to_city, seats)
    except BookingError as e:
        raise to_http_exception(e)

@router.patch("/{trip_id}/status", response_model=TripResponse)
def update_trip_status(trip_id: int, update: TripStatusUpdate, db: Session = Depends(get_db)):
    """Change a trip's status"""
    try:
        return TripService(db).update_trip_status(trip_id, update.status, update.driver_id)
    except BookingError as e:
        raise to_http_exception(e)

@router.put("/{trip_id}/return-link", response_model=TripResponse)
def link_return_trip(trip_id: int, link: ReturnTripLink, db: Session = Depends(get_db)):
    """Link a return trip with a round-trip discount"""
    try:
        return TripService(db).link_return_trip(
            trip_id, link.return_trip_id, link.discount, link.driver_id
        )
    except BookingError as e:
        raise to_http_exception(e)

@router.delete("/{trip_id}/return-link", response_model=TripResponse)
def unlink_return_trip(
    trip_id: int,
    driver_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """Remove a trip's return link"""
    try:
        return TripService(db).unlink_return_trip(trip_id, driver_id)
    except BookingError as e:
        raise to_http_exception(e)
