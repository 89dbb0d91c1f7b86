import logging
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional, Tuple
from decimal import Decimal

from src.config import settings
from src.exceptions import (
    NotFoundError, AccessDeniedError, InvalidDiscountError,
    InvalidStatusTransitionError, TripNotBookableError, BookingError
)
from src.fleet.service import FleetService
from src.models import (
    Trip, TripStation, RouteTemplate, RouteTemplateCity, RouteTemplateStation,
    BookedSeat, Reservation, Vehicle, LuggagePolicy, TempBooking
)
from src.routes.fare_service import to_money
from src.routes.service import RouteCatalogService
from src.trips.schemas import (
    TripCreate, TripBatchCreate, TripBookingDetails, VehicleInfo, TripStationInfo, LuggagePolicyInfo
)
from src.clock import to_naive_utc, utc_now

logger = logging.getLogger(__name__)

MAX_ROUND_TRIP_DISCOUNT = Decimal("0.5")

TERMINAL_TRIP_STATUSES = ("completed", "cancelled")

TRIP_STATUS_TRANSITIONS = {
    "scheduled": ("in_progress", "completed", "cancelled"),
    "in_progress": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}


def validate_round_trip_discount(discount) -> Decimal:
    """Discount is a fraction in [0, 0.5]"""
    rate = Decimal(str(discount))
    if rate < 0 or rate > MAX_ROUND_TRIP_DISCOUNT:
        raise InvalidDiscountError(
            f"Round-trip discount must be between 0 and {MAX_ROUND_TRIP_DISCOUNT}, got {rate}"
        )
    return rate


def apply_round_trip_discount(subtotal, discount) -> Tuple[Decimal, Decimal]:
    """Return (discount_amount, discounted_total) for a subtotal"""
    subtotal = to_money(subtotal)
    discount_amount = to_money(subtotal * Decimal(str(discount or 0)))
    return discount_amount, subtotal - discount_amount


def vehicle_info(vehicle: Vehicle) -> VehicleInfo:
    return VehicleInfo(
        id=vehicle.id,
        make=vehicle.make,
        model=vehicle.model,
        type=vehicle.type,
        capacity=vehicle.capacity,
        features=vehicle.features or [],
        seat_map=vehicle.seat_map
    )


def luggage_policy_info(policy: Optional[LuggagePolicy]) -> Optional[LuggagePolicyInfo]:
    if policy is None:
        return None
    return LuggagePolicyInfo(
        id=policy.id,
        name=policy.name,
        bag_weight_kg=policy.bag_weight_kg,
        fee_per_extra_bag=policy.fee_per_extra_bag,
        max_extra_bags=policy.max_extra_bags,
        max_bag_size=policy.max_bag_size
    )


def trip_station_infos(trip: Trip) -> List[TripStationInfo]:
    return [
        TripStationInfo(
            id=ts.id,
            city_name=ts.city_name,
            country_code=ts.country_code,
            station_name=ts.station.station_name if ts.station else "",
            station_address=(ts.station.station_address or "") if ts.station else "",
            sequence_order=ts.sequence_order,
            is_pickup_point=bool(ts.is_pickup_point),
            is_dropoff_point=bool(ts.is_dropoff_point),
            estimated_time=ts.estimated_time
        )
        for ts in sorted(trip.stations, key=lambda s: (s.sequence_order, s.id))
    ]


def trip_load_options():
    """Eager loads needed to describe a trip without further queries"""
    return (
        joinedload(Trip.stations).joinedload(TripStation.station),
        joinedload(Trip.route_template).joinedload(RouteTemplate.cities),
        joinedload(Trip.driver),
        joinedload(Trip.vehicle),
        joinedload(Trip.luggage_policy),
    )


class TripService:
    def __init__(self, db: Session):
        self.db = db
        self.fleet = FleetService(db)
        self.catalog = RouteCatalogService(db)

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        return self.db.query(Trip).options(*trip_load_options()).filter(Trip.id == trip_id).first()

    def _get_owned_trip(self, trip_id: int, driver_id: int) -> Trip:
        trip = self.get_trip(trip_id)
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")
        if trip.driver_id != driver_id:
            raise AccessDeniedError(f"Trip {trip_id} does not belong to this driver")
        return trip

    def get_booked_seat_numbers(self, trip_id: int) -> List[str]:
        """Seat numbers held by live reservations on a trip"""
        rows = self.db.query(BookedSeat.seat_number).join(Reservation).filter(
            BookedSeat.trip_id == trip_id,
            Reservation.status != "cancelled"
        ).order_by(BookedSeat.id).all()
        return [row[0] for row in rows]

    def _build_trip(self, trip_data: TripCreate) -> Trip:
        """Validate ownership and add the trip with its stations; the caller commits"""
        driver_id = trip_data.driver_id

        template = self.catalog.get_route_template(trip_data.route_template_id)
        if not template:
            raise NotFoundError("Route template not found")
        if template.driver_id != driver_id:
            raise AccessDeniedError("Route template does not belong to this driver")

        vehicle = self.fleet.get_vehicle(trip_data.vehicle_id)
        if not vehicle:
            raise NotFoundError("Vehicle not found")
        if vehicle.driver_id != driver_id:
            raise AccessDeniedError("Vehicle does not belong to this driver")

        if trip_data.luggage_policy_id is not None:
            policy = self.fleet.get_luggage_policy(trip_data.luggage_policy_id)
            if not policy:
                raise NotFoundError("Luggage policy not found")
            if policy.driver_id != driver_id:
                raise AccessDeniedError("Luggage policy does not belong to this driver")
        else:
            policy = self.fleet.get_default_luggage_policy(driver_id)

        departure_time = to_naive_utc(trip_data.departure_time)
        arrival_time = to_naive_utc(trip_data.arrival_time) if trip_data.arrival_time else None

        trip = Trip(
            route_template_id=template.id,
            driver_id=driver_id,
            vehicle_id=vehicle.id,
            luggage_policy_id=policy.id if policy else None,
            departure_time=departure_time,
            arrival_time=arrival_time,
            status="scheduled",
            available_seats=vehicle.capacity
        )
        self.db.add(trip)
        self.db.flush()

        for selection in trip_data.stations:
            city = self.db.query(RouteTemplateCity).filter(
                RouteTemplateCity.id == selection.route_template_city_id,
                RouteTemplateCity.route_template_id == template.id
            ).first()
            if not city:
                raise BookingError(
                    f"City {selection.route_template_city_id} is not part of route template {template.id}"
                )

            station = self.db.query(RouteTemplateStation).filter(
                RouteTemplateStation.id == selection.station_id,
                RouteTemplateStation.route_template_city_id == city.id
            ).first()
            if not station:
                raise BookingError(
                    f"Station {selection.station_id} is not a station of {city.city_name}"
                )

            self.db.add(TripStation(
                trip_id=trip.id,
                route_template_city_id=city.id,
                station_id=station.id,
                city_name=city.city_name,
                country_code=city.country_code,
                sequence_order=city.sequence_order,
                is_pickup_point=selection.is_pickup_point,
                is_dropoff_point=selection.is_dropoff_point,
                estimated_time=to_naive_utc(selection.estimated_time) if selection.estimated_time else None
            ))

        return trip

    def schedule_trip(self, trip_data: TripCreate) -> Trip:
        """Create a trip on a route template with the driver's vehicle and policy"""
        try:
            trip = self._build_trip(trip_data)
        except BookingError:
            self.db.rollback()
            raise

        self.db.commit()
        self.db.refresh(trip)

        logger.info(
            "Trip %s scheduled on route template %s with %s seats",
            trip.id, trip.route_template_id, trip.available_seats
        )
        return trip

    def schedule_trips(self, batch: TripBatchCreate) -> List[Trip]:
        """Schedule every trip of a batch, or none of them"""
        try:
            trips = [self._build_trip(trip_data) for trip_data in batch.trips]
        except BookingError:
            self.db.rollback()
            raise

        self.db.commit()
        for trip in trips:
            self.db.refresh(trip)

        logger.info("Batch of %d trip(s) scheduled: %s", len(trips), [trip.id for trip in trips])
        return trips

    def delete_trip(self, trip_id: int, driver_id: int):
        """Remove a trip that nobody is booked or holding seats on"""
        trip = self._get_owned_trip(trip_id, driver_id)

        live = self.db.query(Reservation).filter(
            Reservation.trip_id == trip.id,
            Reservation.status.in_(("confirmed", "pending"))
        ).count()
        if live:
            raise InvalidStatusTransitionError("Cannot delete trip with confirmed or pending reservations")

        history = self.db.query(Reservation).filter(Reservation.trip_id == trip.id).count()
        if history:
            raise InvalidStatusTransitionError(
                f"Trip {trip_id} has past reservations; cancel it instead of deleting it"
            )

        open_holds = self.db.query(TempBooking).filter(
            TempBooking.trip_id == trip.id,
            TempBooking.status.in_(("pending", "processing")),
            TempBooking.expires_at > utc_now()
        ).count()
        if open_holds:
            raise InvalidStatusTransitionError(f"Trip {trip_id} has seat holds awaiting payment")

        self.db.query(Trip).filter(Trip.return_trip_id == trip.id).update(
            {Trip.return_trip_id: None, Trip.round_trip_discount: None},
            synchronize_session=False
        )
        self.db.query(TempBooking).filter(TempBooking.trip_id == trip.id).delete(synchronize_session=False)
        self.db.query(TripStation).filter(TripStation.trip_id == trip.id).delete(synchronize_session=False)
        self.db.query(Trip).filter(Trip.id == trip.id).delete(synchronize_session=False)
        self.db.commit()

        logger.info("Trip %s deleted by driver %s", trip_id, driver_id)

    def update_trip_status(self, trip_id: int, new_status: str, driver_id: int) -> Trip:
        """Move a trip through its lifecycle; nothing leaves completed or cancelled"""
        trip = self._get_owned_trip(trip_id, driver_id)

        if new_status not in TRIP_STATUS_TRANSITIONS.get(trip.status, ()):
            raise InvalidStatusTransitionError(
                f"Cannot change trip status from {trip.status} to {new_status}"
            )

        old_status = trip.status
        trip.status = new_status
        self.db.commit()
        self.db.refresh(trip)

        logger.info("Trip %s status %s -> %s", trip_id, old_status, new_status)
        return trip

    def link_return_trip(self, trip_id: int, return_trip_id: int, discount, driver_id: int) -> Trip:
        """Offer return_trip_id as the return leg of trip_id at a discount"""
        rate = validate_round_trip_discount(discount)

        if trip_id == return_trip_id:
            raise TripNotBookableError("A trip cannot be its own return trip")

        trip = self._get_owned_trip(trip_id, driver_id)
        return_trip = self._get_owned_trip(return_trip_id, driver_id)

        for leg in (trip, return_trip):
            if leg.status in TERMINAL_TRIP_STATUSES:
                raise TripNotBookableError(f"Trip {leg.id} is {leg.status}")

        if return_trip.departure_time <= trip.departure_time:
            raise TripNotBookableError("Return trip must depart after the outbound trip")

        trip.return_trip_id = return_trip.id
        trip.round_trip_discount = rate
        self.db.commit()
        self.db.refresh(trip)

        logger.info("Trip %s linked to return trip %s at discount %s", trip_id, return_trip_id, rate)
        return trip

    def unlink_return_trip(self, trip_id: int, driver_id: int) -> Trip:
        trip = self._get_owned_trip(trip_id, driver_id)
        trip.return_trip_id = None
        trip.round_trip_discount = None
        self.db.commit()
        self.db.refresh(trip)
        return trip

    def get_trip_for_booking(self, trip_id: int) -> TripBookingDetails:
        """Full trip details with booked seats and the fare table"""
        trip = self.get_trip(trip_id)
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")

        template = trip.route_template
        return TripBookingDetails(
            trip_id=trip.id,
            route_template_id=template.id,
            route_template_name=template.name,
            driver_id=trip.driver_id,
            driver_name=trip.driver.full_name or "",
            driver_rating=trip.driver.rating,
            status=trip.status,
            vehicle=vehicle_info(trip.vehicle),
            departure_time=trip.departure_time,
            arrival_time=trip.arrival_time,
            available_seats=trip.available_seats,
            total_seats=trip.vehicle.capacity,
            booked_seats=self.get_booked_seat_numbers(trip.id),
            route_cities=[city.city_name for city in template.cities],
            trip_stations=trip_station_infos(trip),
            fares=self.catalog.get_intercity_fares(template.id),
            luggage_policy=luggage_policy_info(trip.luggage_policy),
            return_trip_id=trip.return_trip_id,
            round_trip_discount=trip.round_trip_discount,
            currency=settings.CURRENCY
        )
