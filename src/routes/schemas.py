from pydantic import BaseModel
from typing import List, Optional, Literal
from decimal import Decimal

PriceSource = Literal["direct", "summed", "base_price"]

class RouteStation(BaseModel):
    """Boarding station inside a route template city"""
    id: int
    station_name: str
    station_address: str = ""

class RouteCity(BaseModel):
    """City of a route template, in travel order"""
    id: int
    city_name: str
    country_code: str
    sequence_order: int
    stations: List[RouteStation] = []

class FareRow(BaseModel):
    """Directional intercity fare"""
    from_city: str
    to_city: str
    price: Decimal

class RouteTemplateDetail(BaseModel):
    """Route template with ordered cities and its fare table"""
    id: int
    driver_id: int
    name: str
    estimated_duration: Optional[str] = None
    base_price: Decimal
    status: Literal["draft", "active", "inactive"]
    cities: List[RouteCity]
    fares: List[FareRow]

class ResolvedPrice(BaseModel):
    """Result of fare resolution for one city pair"""
    price: Decimal
    source: PriceSource

class SegmentQuote(BaseModel):
    """Segment price for a trip together with the full-route price"""
    route_template_id: int
    from_city: str
    to_city: str
    segment_price: Decimal
    price_source: PriceSource
    full_route_price: Decimal
    full_route_price_source: PriceSource
    currency: str
