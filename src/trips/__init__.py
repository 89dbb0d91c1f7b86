"""
Trip Registry & Search Module

Trips are scheduled departures of a route template with a concrete vehicle,
a luggage policy and a subset of the template's stations. Passengers search
trips by city pair and may ride any forward sub-segment of a trip.

- Trip scheduling, status lifecycle and return-trip links
- Segment search with seat, price and calendar-day filters
- Ranking by price, departure, duration or driver rating
- Round-trip offers from driver-linked return trips

Key Components:
- service.py: Trip registry (scheduling, status, return links, booking details)
- search_service.py: Segment search and round-trip composition
- validation.py: Search request validation
- router.py: FastAPI endpoints for trips
- schemas.py: Pydantic models for request/response structures
"""

from .router import router
from .service import TripService, validate_round_trip_discount, apply_round_trip_discount
from .search_service import TripSearchService
from .validation import TripSearchValidator
from .schemas import (
    TripSearchRequest, TripSearchResult, RoundTripOffer, TripBookingDetails,
    TripCreate, TripResponse, StationSelection, ValidationIssue
)

__all__ = [
    "router",
    "TripService",
    "TripSearchService",
    "TripSearchValidator",
    "validate_round_trip_discount",
    "apply_round_trip_discount",
    "TripSearchRequest",
    "TripSearchResult",
    "RoundTripOffer",
    "TripBookingDetails",
    "TripCreate",
    "TripResponse",
    "StationSelection",
    "ValidationIssue"
]
