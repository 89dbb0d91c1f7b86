import logging
from typing import Dict, Iterable, List, Optional, Tuple
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session

from src.config import settings
from src.exceptions import InvalidSegmentError
from src.models import RouteTemplate, Trip
from src.routes.schemas import FareRow, ResolvedPrice, SegmentQuote
from src.routes.service import RouteCatalogService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_city(name: str) -> str:
    """City names match case-insensitively with collapsed whitespace"""
    return " ".join(name.split()).casefold()


def served_city_orders(stations: Iterable) -> Dict[str, int]:
    """Map each served city to its sequence order.

    Accepts anything with ``city_name`` and ``sequence_order`` attributes
    (TripStation rows or route template cities).
    """
    orders: Dict[str, int] = {}
    for station in stations:
        key = normalize_city(station.city_name)
        if key not in orders or station.sequence_order < orders[key]:
            orders[key] = station.sequence_order
    return orders


def validate_segment(served_orders: Dict[str, int], from_city: str, to_city: str) -> Tuple[int, int]:
    """Check that from_city -> to_city is a forward sub-segment of the route"""
    from_order = served_orders.get(normalize_city(from_city))
    to_order = served_orders.get(normalize_city(to_city))

    if from_order is None:
        raise InvalidSegmentError(f"'{from_city}' is not served on this route")
    if to_order is None:
        raise InvalidSegmentError(f"'{to_city}' is not served on this route")
    if from_order >= to_order:
        raise InvalidSegmentError(
            f"'{from_city}' must come before '{to_city}' in the direction of travel"
        )
    return from_order, to_order


def is_valid_segment(served_orders: Dict[str, int], from_city: str, to_city: str) -> bool:
    try:
        validate_segment(served_orders, from_city, to_city)
    except InvalidSegmentError:
        return False
    return True


def resolve_fare(
    route_cities: List[str],
    fares: List[FareRow],
    base_price: Decimal,
    from_city: str,
    to_city: str,
    route_template_id: Optional[int] = None
) -> ResolvedPrice:
    """Resolve the fare for a city pair.

    Order: exact directional row, then the sum of adjacent hops along
    ``route_cities``, then the template base price.
    """
    table = {
        (normalize_city(f.from_city), normalize_city(f.to_city)): Decimal(f.price)
        for f in fares
    }
    origin = normalize_city(from_city)
    destination = normalize_city(to_city)

    direct = table.get((origin, destination))
    if direct is not None:
        return ResolvedPrice(price=to_money(direct), source="direct")

    path = [normalize_city(c) for c in route_cities]
    if origin in path and destination in path:
        start, end = path.index(origin), path.index(destination)
        if end - start > 1:
            total = Decimal("0")
            for i in range(start, end):
                hop = table.get((path[i], path[i + 1]))
                if hop is None:
                    break
                total += hop
            else:
                return ResolvedPrice(price=to_money(total), source="summed")

    logger.warning(
        "No fare for %s -> %s on route template %s; falling back to base price %s",
        from_city, to_city, route_template_id, base_price
    )
    return ResolvedPrice(price=to_money(base_price), source="base_price")


def resolve_full_route_fare(
    route_cities: List[str],
    fares: List[FareRow],
    base_price: Decimal,
    route_template_id: Optional[int] = None
) -> ResolvedPrice:
    if len(route_cities) < 2:
        return ResolvedPrice(price=to_money(base_price), source="base_price")
    return resolve_fare(
        route_cities, fares, base_price, route_cities[0], route_cities[-1], route_template_id
    )


class SegmentPricingService:
    """Prices trip sub-segments from route template fare tables"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = RouteCatalogService(db)
        self._fares_cache: Dict[int, List[FareRow]] = {}
        self._cities_cache: Dict[int, List[str]] = {}

    def get_fares(self, route_template_id: int) -> List[FareRow]:
        if route_template_id not in self._fares_cache:
            self._fares_cache[route_template_id] = self.catalog.get_intercity_fares(route_template_id)
        return self._fares_cache[route_template_id]

    def get_city_names(self, route_template_id: int) -> List[str]:
        if route_template_id not in self._cities_cache:
            cities = self.catalog.get_route_template_cities(route_template_id)
            self._cities_cache[route_template_id] = [c.city_name for c in cities]
        return self._cities_cache[route_template_id]

    def quote_trip_segment(self, trip: Trip, from_city: str, to_city: str) -> SegmentQuote:
        """Validate the segment against the trip's served stations and price it"""
        validate_segment(served_city_orders(trip.stations), from_city, to_city)
        return self._quote(trip.route_template, from_city, to_city)

    def quote_template_segment(self, template: RouteTemplate, from_city: str, to_city: str) -> SegmentQuote:
        """Validate the segment against the template's own cities and price it"""
        validate_segment(served_city_orders(template.cities), from_city, to_city)
        return self._quote(template, from_city, to_city)

    def _quote(self, template: RouteTemplate, from_city: str, to_city: str) -> SegmentQuote:
        route_cities = self.get_city_names(template.id)
        fares = self.get_fares(template.id)

        segment = resolve_fare(
            route_cities, fares, template.base_price, from_city, to_city, template.id
        )
        full_route = resolve_full_route_fare(route_cities, fares, template.base_price, template.id)

        return SegmentQuote(
            route_template_id=template.id,
            from_city=from_city,
            to_city=to_city,
            segment_price=segment.price,
            price_source=segment.source,
            full_route_price=full_route.price,
            full_route_price_source=full_route.source,
            currency=settings.CURRENCY
        )
