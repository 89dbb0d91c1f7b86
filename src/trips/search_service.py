import logging
from sqlalchemy.orm import Session
from typing import List, Optional
from decimal import Decimal

from src.clock import local_day_bounds
from src.config import settings
from src.exceptions import (
    SearchValidationError, InvalidSegmentError, NotFoundError, TripNotBookableError, CapacityConflictError
)
from src.models import Trip
from src.routes.fare_service import (
    SegmentPricingService, normalize_city, served_city_orders, is_valid_segment
)
from src.routes.schemas import SegmentQuote
from src.trips.schemas import (
    TripSearchRequest, TripSearchResult, RoundTripOffer, StationOption
)
from src.trips.service import (
    trip_load_options, vehicle_info, trip_station_infos, luggage_policy_info,
    apply_round_trip_discount
)
from src.trips.validation import TripSearchValidator, parse_search_date

logger = logging.getLogger(__name__)


def _sort_key(sort_by: str):
    if sort_by == "price":
        return lambda r: (r.segment_price, r.trip_id)
    if sort_by == "duration":
        # Unknown durations go last
        return lambda r: (r.duration_minutes is None, r.duration_minutes or 0, r.trip_id)
    if sort_by == "rating":
        return lambda r: (-(r.driver_rating or Decimal("0")), r.trip_id)
    return lambda r: (r.departure_time, r.trip_id)


class TripSearchService:
    """Segment search over scheduled trips"""

    def __init__(self, db: Session):
        self.db = db
        self.pricing = SegmentPricingService(db)
        self.validator = TripSearchValidator()

    def _scheduled_trips(self) -> List[Trip]:
        return self.db.query(Trip).options(*trip_load_options()).filter(
            Trip.status == "scheduled"
        ).order_by(Trip.id).all()

    def _destination_zone(self, trip: Trip, to_city: str) -> str:
        key = normalize_city(to_city)
        country = next(
            (ts.country_code for ts in trip.stations if normalize_city(ts.city_name) == key),
            None
        )
        zone = settings.COUNTRY_TIMEZONES.get((country or "").upper())
        if zone is None:
            logger.info(
                "No time zone configured for country %s; using %s for trip %s",
                country, settings.SEARCH_TIMEZONE, trip.id
            )
            return settings.SEARCH_TIMEZONE
        return zone

    def _date_zone(self, trip: Trip, to_city: str, date_basis: str) -> str:
        if date_basis == "destination":
            return self._destination_zone(trip, to_city)
        return settings.SEARCH_TIMEZONE

    def _departs_on(self, trip: Trip, day, tz_name: str) -> bool:
        start, end = local_day_bounds(day, tz_name)
        return start <= trip.departure_time < end

    def build_result(
        self,
        trip: Trip,
        from_city: str,
        to_city: str,
        quote: SegmentQuote,
        date_timezone: str
    ) -> TripSearchResult:
        """Denormalize a trip and its segment quote into a search result"""
        origin = normalize_city(from_city)
        destination = normalize_city(to_city)
        stations = trip_station_infos(trip)

        duration_minutes = None
        if trip.arrival_time:
            duration_minutes = int((trip.arrival_time - trip.departure_time).total_seconds() // 60)

        return TripSearchResult(
            trip_id=trip.id,
            route_template_id=trip.route_template_id,
            route_template_name=trip.route_template.name,
            driver_id=trip.driver_id,
            driver_name=trip.driver.full_name or "",
            driver_rating=trip.driver.rating,
            vehicle=vehicle_info(trip.vehicle),
            departure_time=trip.departure_time,
            arrival_time=trip.arrival_time,
            duration_minutes=duration_minutes,
            available_seats=trip.available_seats,
            total_seats=trip.vehicle.capacity,
            route_cities=[city.city_name for city in trip.route_template.cities],
            trip_stations=stations,
            pickup_stations=[
                StationOption(
                    id=s.id, city_name=s.city_name,
                    station_name=s.station_name, station_address=s.station_address
                )
                for s in stations
                if normalize_city(s.city_name) == origin and s.is_pickup_point
            ],
            dropoff_stations=[
                StationOption(
                    id=s.id, city_name=s.city_name,
                    station_name=s.station_name, station_address=s.station_address
                )
                for s in stations
                if normalize_city(s.city_name) == destination and s.is_dropoff_point
            ],
            luggage_policy=luggage_policy_info(trip.luggage_policy),
            segment_price=quote.segment_price,
            full_route_price=quote.full_route_price,
            price_source=quote.price_source,
            currency=quote.currency,
            date_timezone=date_timezone,
            return_trip_id=trip.return_trip_id,
            round_trip_discount=trip.round_trip_discount
        )

    def _match(
        self,
        trip: Trip,
        from_city: str,
        to_city: str,
        min_seats: int,
        max_price: Optional[Decimal] = None
    ) -> Optional[SegmentQuote]:
        """Quote a trip for a segment, or None if it does not qualify"""
        if len(trip.route_template.cities) < 2:
            return None
        if not is_valid_segment(served_city_orders(trip.stations), from_city, to_city):
            return None
        if trip.available_seats < min_seats:
            return None

        quote = self.pricing.quote_trip_segment(trip, from_city, to_city)
        if max_price is not None and quote.segment_price > max_price:
            return None
        return quote

    def search(self, request: TripSearchRequest) -> List[TripSearchResult]:
        """Find scheduled trips serving from_city -> to_city, ranked by sort_by"""
        issues = self.validator.validate_search_request(request)
        if issues:
            raise SearchValidationError(issues)

        day = parse_search_date(request.departure_date) if request.departure_date else None
        results = []

        for trip in self._scheduled_trips():
            tz_name = self._date_zone(trip, request.to_city, request.date_basis)
            if day is not None and not self._departs_on(trip, day, tz_name):
                continue

            quote = self._match(
                trip, request.from_city, request.to_city, request.min_seats, request.max_price
            )
            if quote is None:
                continue

            results.append(self.build_result(trip, request.from_city, request.to_city, quote, tz_name))

        results.sort(key=_sort_key(request.sort_by))

        logger.debug(
            "Search %s -> %s on %s returned %d trip(s)",
            request.from_city, request.to_city, request.departure_date, len(results)
        )
        return results

    def _compose(
        self,
        outbound: TripSearchResult,
        return_result: TripSearchResult,
        discount: Optional[Decimal]
    ) -> RoundTripOffer:
        rate = Decimal(str(discount or 0))
        subtotal = outbound.segment_price + return_result.segment_price
        discount_amount, total = apply_round_trip_discount(subtotal, rate)
        return RoundTripOffer(
            outbound=outbound,
            return_trip=return_result,
            subtotal=subtotal,
            discount_rate=rate,
            discount_amount=discount_amount,
            total_price=total,
            currency=settings.CURRENCY
        )

    def _return_leg(
        self,
        trip: Trip,
        from_city: str,
        to_city: str,
        min_seats: int,
        return_day=None,
        date_basis: str = "utc"
    ) -> Optional[TripSearchResult]:
        """Result for the linked return trip travelling to_city -> from_city"""
        return_trip = self.db.query(Trip).options(*trip_load_options()).filter(
            Trip.id == trip.return_trip_id,
            Trip.status == "scheduled"
        ).first()
        if return_trip is None:
            return None

        # The return leg's destination is the outbound origin
        tz_name = self._date_zone(return_trip, from_city, date_basis)
        if return_day is not None and not self._departs_on(return_trip, return_day, tz_name):
            return None

        quote = self._match(return_trip, to_city, from_city, min_seats)
        if quote is None:
            return None
        return self.build_result(return_trip, to_city, from_city, quote, tz_name)

    def compose_round_trip(
        self,
        trip_id: int,
        from_city: str,
        to_city: str,
        seats: int = 1
    ) -> RoundTripOffer:
        """Round-trip offer for a trip and its driver-linked return trip"""
        trip = self.db.query(Trip).options(*trip_load_options()).filter(Trip.id == trip_id).first()
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")
        if not trip.return_trip_id:
            raise NotFoundError(f"Trip {trip_id} has no return trip")
        if trip.status != "scheduled":
            raise TripNotBookableError(f"Trip {trip_id} is {trip.status} and cannot be booked")
        if trip.available_seats < seats:
            raise CapacityConflictError(
                f"Only {trip.available_seats} seat(s) left on trip {trip_id}; {seats} requested"
            )

        quote = self.pricing.quote_trip_segment(trip, from_city, to_city)
        outbound = self.build_result(trip, from_city, to_city, quote, settings.SEARCH_TIMEZONE)

        return_result = self._return_leg(trip, from_city, to_city, seats)
        if return_result is None:
            raise InvalidSegmentError(
                f"Return trip {trip.return_trip_id} does not serve {to_city} -> {from_city} "
                f"with {seats} seat(s) available"
            )

        return self._compose(outbound, return_result, trip.round_trip_discount)

    def search_round_trips(
        self,
        request: TripSearchRequest,
        return_date: Optional[str] = None
    ) -> List[RoundTripOffer]:
        """Round-trip offers for every outbound search hit with a usable return link"""
        return_issue = self.validator.validate_date(return_date, "return_date")
        if return_issue:
            raise SearchValidationError([return_issue])
        return_day = parse_search_date(return_date) if return_date else None

        offers = []
        for outbound in self.search(request):
            if not outbound.return_trip_id:
                continue

            trip = self.db.query(Trip).options(*trip_load_options()).filter(
                Trip.id == outbound.trip_id
            ).first()
            return_result = self._return_leg(
                trip, request.from_city, request.to_city, request.min_seats,
                return_day, request.date_basis
            )
            if return_result is None:
                continue

            offers.append(self._compose(outbound, return_result, outbound.round_trip_discount))

        return offers
