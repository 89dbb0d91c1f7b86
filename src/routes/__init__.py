"""
Route Catalog & Segment Pricing Module

Route templates are the driver-defined backbone of every trip: an ordered
list of cities, boarding stations inside each city, and a directional fare
table between cities. This module reads that catalog and prices any forward
sub-segment of a route.

- Ordered city and station lookup for a route template
- Directional intercity fare table lookup
- Segment validation (no reverse, no zero-length, served cities only)
- Segment fare resolution: direct fare, summed adjacent hops, base price

Key Components:
- service.py: Read access to route templates, cities, stations and fares
- fare_service.py: Segment validation and fare resolution
- router.py: FastAPI endpoints for the route catalog
- schemas.py: Pydantic models for request/response structures
"""

from .router import router
from .service import RouteCatalogService
from .fare_service import (
    SegmentPricingService, resolve_fare, resolve_full_route_fare,
    validate_segment, served_city_orders, normalize_city
)
from .schemas import (
    RouteStation, RouteCity, FareRow, RouteTemplateDetail,
    ResolvedPrice, SegmentQuote
)

__all__ = [
    "router",
    "RouteCatalogService",
    "SegmentPricingService",
    "resolve_fare",
    "resolve_full_route_fare",
    "validate_segment",
    "served_city_orders",
    "normalize_city",
    "RouteStation",
    "RouteCity",
    "FareRow",
    "RouteTemplateDetail",
    "ResolvedPrice",
    "SegmentQuote"
]
