from pydantic import BaseModel, Field, validator
from typing import List, Optional, Literal, Any
from datetime import datetime
from decimal import Decimal

from src.routes.schemas import FareRow, PriceSource

TripStatus = Literal["scheduled", "in_progress", "completed", "cancelled"]

class ValidationIssue(BaseModel):
    """Single problem found while validating a search request"""
    error_code: str
    error_message: str
    field: Optional[str] = None

# Search
class TripSearchRequest(BaseModel):
    """Segment search parameters.

    ``sort_by`` and ``date_basis`` stay plain strings here so that bad values
    are reported by the search validator together with the other issues.
    """
    from_city: str
    to_city: str
    departure_date: Optional[str] = None
    min_seats: int = 1
    max_price: Optional[Decimal] = None
    sort_by: str = "departure"
    date_basis: str = "utc"

class VehicleInfo(BaseModel):
    id: int
    make: str
    model: str
    type: Optional[str] = None
    capacity: int
    features: List[str] = []
    seat_map: Optional[Any] = None

class TripStationInfo(BaseModel):
    """Station served by a trip, in travel order"""
    id: int
    city_name: str
    country_code: str
    station_name: str
    station_address: str = ""
    sequence_order: int
    is_pickup_point: bool
    is_dropoff_point: bool
    estimated_time: Optional[datetime] = None

class StationOption(BaseModel):
    """Pickup or dropoff choice offered to the passenger"""
    id: int
    city_name: str
    station_name: str
    station_address: str = ""

class LuggagePolicyInfo(BaseModel):
    id: int
    name: str
    bag_weight_kg: Decimal
    fee_per_extra_bag: Decimal
    max_extra_bags: int
    max_bag_size: Optional[str] = None

class TripSearchResult(BaseModel):
    """Denormalized search hit for one trip and one segment"""
    trip_id: int
    route_template_id: int
    route_template_name: str
    driver_id: int
    driver_name: str
    driver_rating: Optional[Decimal] = None
    vehicle: VehicleInfo
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    available_seats: int
    total_seats: int
    route_cities: List[str]
    trip_stations: List[TripStationInfo]
    pickup_stations: List[StationOption]
    dropoff_stations: List[StationOption]
    luggage_policy: Optional[LuggagePolicyInfo] = None
    segment_price: Decimal
    full_route_price: Decimal
    price_source: PriceSource
    currency: str
    date_timezone: str
    return_trip_id: Optional[int] = None
    round_trip_discount: Optional[Decimal] = None

class RoundTripOffer(BaseModel):
    """Outbound and return legs priced together with the driver's discount"""
    outbound: TripSearchResult
    return_trip: TripSearchResult
    subtotal: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    total_price: Decimal
    currency: str

# Trip registry
class StationSelection(BaseModel):
    """Template station chosen as a stop of a new trip"""
    route_template_city_id: int
    station_id: int
    is_pickup_point: bool = True
    is_dropoff_point: bool = True
    estimated_time: Optional[datetime] = None

class TripCreate(BaseModel):
    driver_id: int
    route_template_id: int
    vehicle_id: int
    luggage_policy_id: Optional[int] = None
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    stations: List[StationSelection] = Field(..., min_length=2)

    @validator('arrival_time')
    def validate_arrival_time(cls, v, values):
        if v is not None and 'departure_time' in values and v <= values['departure_time']:
            raise ValueError('Arrival time must be after departure time')
        return v

class TripBatchCreate(BaseModel):
    """Several trips scheduled together by one driver"""
    trips: List[TripCreate] = Field(..., min_length=1)

    @validator('trips')
    def validate_single_driver(cls, v):
        if len({trip.driver_id for trip in v}) > 1:
            raise ValueError('All trips in a batch must belong to the same driver')
        return v

class TripResponse(BaseModel):
    id: int
    route_template_id: int
    driver_id: int
    vehicle_id: int
    luggage_policy_id: Optional[int] = None
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    status: TripStatus
    available_seats: int
    return_trip_id: Optional[int] = None
    round_trip_discount: Optional[Decimal] = None

    class Config:
        from_attributes = True

class TripStatusUpdate(BaseModel):
    driver_id: int
    status: TripStatus

class ReturnTripLink(BaseModel):
    driver_id: int
    return_trip_id: int
    discount: Decimal = Decimal("0")

class TripBookingDetails(BaseModel):
    """Everything the booking screen needs for one trip"""
    trip_id: int
    route_template_id: int
    route_template_name: str
    driver_id: int
    driver_name: str
    driver_rating: Optional[Decimal] = None
    status: TripStatus
    vehicle: VehicleInfo
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    available_seats: int
    total_seats: int
    booked_seats: List[str]
    route_cities: List[str]
    trip_stations: List[TripStationInfo]
    fares: List[FareRow]
    luggage_policy: Optional[LuggagePolicyInfo] = None
    return_trip_id: Optional[int] = None
    round_trip_discount: Optional[Decimal] = None
    currency: str
