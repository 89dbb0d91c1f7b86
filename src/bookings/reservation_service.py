import logging
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional
from decimal import Decimal

from src.bookings.hold_service import BookingValidator
from src.bookings.references import generate_booking_reference
from src.bookings.schemas import (
    ReservationResponse, DirectReservationCreate, DriverReservationStats
)
from src.clock import utc_now
from src.exceptions import (
    NotFoundError, AccessDeniedError, InvalidStatusTransitionError,
    CapacityConflictError, SeatConflictError
)
from src.models import Reservation, BookedSeat, Trip

logger = logging.getLogger(__name__)

RESERVATION_STATUS_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}


def reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(
        id=reservation.id,
        trip_id=reservation.trip_id,
        passenger_id=reservation.passenger_id,
        pickup_station_id=reservation.pickup_station_id,
        dropoff_station_id=reservation.dropoff_station_id,
        number_of_bags=reservation.number_of_bags,
        segment_price=reservation.segment_price,
        luggage_fee=reservation.luggage_fee,
        total_price=reservation.total_price,
        passenger_name=reservation.passenger_name,
        passenger_email=reservation.passenger_email,
        passenger_phone=reservation.passenger_phone,
        booking_reference=reservation.booking_reference,
        temp_booking_id=reservation.temp_booking_id,
        booking_group_id=reservation.booking_group_id,
        linked_reservation_id=reservation.linked_reservation_id,
        status=reservation.status,
        seats=[seat.seat_number for seat in sorted(reservation.booked_seats, key=lambda s: s.id)],
        created_at=reservation.created_at
    )


class ReservationService:
    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(Reservation).options(joinedload(Reservation.booked_seats))

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        return self._query().filter(Reservation.id == reservation_id).first()

    def get_by_reference(self, booking_reference: str) -> Optional[Reservation]:
        return self._query().filter(
            Reservation.booking_reference == booking_reference.strip().upper()
        ).first()

    def get_by_temp_booking_id(self, temp_booking_id: str) -> Optional[Reservation]:
        return self._query().filter(Reservation.temp_booking_id == temp_booking_id).first()

    def get_group_reservations(self, booking_group_id: str) -> List[Reservation]:
        return self._query().filter(
            Reservation.booking_group_id == booking_group_id
        ).order_by(Reservation.id).all()

    def _get_driver_trip(self, trip_id: int, driver_id: int) -> Trip:
        trip = self.db.query(Trip).filter(Trip.id == trip_id).first()
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")
        if trip.driver_id != driver_id:
            raise AccessDeniedError(f"Trip {trip_id} does not belong to this driver")
        return trip

    def get_trip_reservations(self, trip_id: int, driver_id: int) -> List[Reservation]:
        """Reservations on one of the driver's trips"""
        self._get_driver_trip(trip_id, driver_id)
        return self._query().filter(
            Reservation.trip_id == trip_id
        ).order_by(Reservation.created_at, Reservation.id).all()

    def get_driver_stats(self, driver_id: int) -> DriverReservationStats:
        rows = self.db.query(
            Reservation.status,
            func.count(Reservation.id),
            func.coalesce(func.sum(Reservation.total_price), 0)
        ).join(Trip, Reservation.trip_id == Trip.id).filter(
            Trip.driver_id == driver_id
        ).group_by(Reservation.status).all()

        by_status = {status: 0 for status in RESERVATION_STATUS_TRANSITIONS}
        revenue = Decimal("0")
        for status, count, total in rows:
            by_status[status] = count
            if status != "cancelled":
                revenue += Decimal(str(total))

        passengers = self.db.query(func.count(BookedSeat.id)).join(
            Reservation, BookedSeat.reservation_id == Reservation.id
        ).join(Trip, Reservation.trip_id == Trip.id).filter(
            Trip.driver_id == driver_id,
            Reservation.status != "cancelled"
        ).scalar() or 0

        return DriverReservationStats(
            driver_id=driver_id,
            total_reservations=sum(by_status.values()),
            by_status=by_status,
            total_revenue=revenue.quantize(Decimal("0.01")),
            total_passengers=passengers
        )

    def update_status(self, reservation_id: int, new_status: str, driver_id: int) -> Reservation:
        """Driver-side status change; cancelling gives the seats back to the trip"""
        reservation = self.get_reservation(reservation_id)
        if not reservation:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        trip = self._get_driver_trip(reservation.trip_id, driver_id)

        if new_status not in RESERVATION_STATUS_TRANSITIONS.get(reservation.status, ()):
            raise InvalidStatusTransitionError(
                f"Cannot change reservation status from {reservation.status} to {new_status}"
            )

        if new_status == "cancelled":
            if trip.status == "completed":
                raise InvalidStatusTransitionError("Cannot cancel a reservation on a completed trip")

            released = len(reservation.booked_seats)
            reservation.booked_seats = []
            self.db.query(Trip).filter(Trip.id == trip.id).update(
                {Trip.available_seats: Trip.available_seats + released},
                synchronize_session=False
            )
            logger.info("Reservation %s cancelled, %d seat(s) released on trip %s", reservation_id, released, trip.id)

        old_status = reservation.status
        reservation.status = new_status
        reservation.updated_at = utc_now()
        self.db.commit()

        logger.info("Reservation %s status %s -> %s", reservation_id, old_status, new_status)
        return self.get_reservation(reservation_id)

    def create_direct_reservation(self, request: DirectReservationCreate) -> Reservation:
        """Walk-in booking by the driver: confirmed at once, no hold and no payment"""
        validator = BookingValidator(self.db)
        self._get_driver_trip(request.trip_id, request.driver_id)
        trip, _, _, seats, price = validator.validate(request)

        now = utc_now()
        try:
            decremented = self.db.query(Trip).filter(
                Trip.id == trip.id,
                Trip.available_seats >= len(seats),
                Trip.status == "scheduled"
            ).update(
                {Trip.available_seats: Trip.available_seats - len(seats)},
                synchronize_session=False
            )
            if decremented == 0:
                raise CapacityConflictError(f"Not enough seats left on trip {trip.id}")

            reservation = Reservation(
                trip_id=trip.id,
                passenger_id=request.passenger.passenger_id,
                pickup_station_id=request.pickup_station_id,
                dropoff_station_id=request.dropoff_station_id,
                number_of_bags=request.number_of_bags,
                segment_price=price.segment_price,
                luggage_fee=price.luggage_fee,
                total_price=price.total_price,
                passenger_name=request.passenger.full_name,
                passenger_email=request.passenger.email,
                passenger_phone=request.passenger.phone,
                booking_reference=generate_booking_reference(self.db),
                status="confirmed",
                created_at=now,
                updated_at=now
            )
            reservation.booked_seats = [
                BookedSeat(trip_id=trip.id, seat_number=seat) for seat in seats
            ]
            self.db.add(reservation)
            try:
                self.db.commit()
            except IntegrityError:
                raise SeatConflictError()
        except CapacityConflictError:
            self.db.rollback()
            raise

        logger.info("Walk-in reservation %s created on trip %s for seats %s", reservation.id, trip.id, seats)
        return self.get_reservation(reservation.id)

    def link_group(self, booking_group_id: str) -> List[Reservation]:
        """Point the two reservations of a round-trip group at each other"""
        reservations = self.db.query(Reservation).filter(
            Reservation.booking_group_id == booking_group_id
        ).order_by(Reservation.id).all()
        if len(reservations) != 2:
            return reservations

        first, second = reservations
        if first.linked_reservation_id != second.id or second.linked_reservation_id != first.id:
            first.linked_reservation_id = second.id
            second.linked_reservation_id = first.id
            self.db.commit()
            logger.info("Round-trip reservations %s and %s linked (group %s)", first.id, second.id, booking_group_id)
        return reservations
