"""
Reservations after conversion.
Covers:
- Driver status changes and the seats released on cancellation
- Walk-in reservations
- Lookups and driver statistics
"""
from decimal import Decimal

import pytest

from src.bookings.conversion_service import ConversionService
from src.bookings.reservation_service import ReservationService
from src.bookings.schemas import DirectReservationCreate
from src.exceptions import (
    InvalidStatusTransitionError, AccessDeniedError, CapacityConflictError, SeatSelectionError
)
from src.models import Trip, BookedSeat


def reserve(db, factory, trip, seats=("1A",), intent="pi_res"):
    hold = factory.hold(trip, seats=seats, payment_intent_id=intent)
    return ConversionService(db).convert_hold(hold.id, intent).reservation


def walk_in(factory, trip, seats=("5A",), driver_id=None):
    request = factory.hold_request(trip, seats=seats)
    return DirectReservationCreate(driver_id=driver_id or trip.driver_id, **request.model_dump())


# ────────────────────────── status changes ──────────────────────────────────

def test_cancellation_releases_seats(db, factory):
    trip = factory.scenario(capacity=4)
    reservation = reserve(db, factory, trip, seats=("1A", "1B"))
    assert factory.reload(Trip, trip.id).available_seats == 2

    cancelled = ReservationService(db).update_status(reservation.id, "cancelled", trip.driver_id)

    assert cancelled.status == "cancelled"
    assert cancelled.booked_seats == []
    assert factory.reload(Trip, trip.id).available_seats == 4
    assert db.query(BookedSeat).count() == 0


def test_cancelled_seat_can_be_booked_again(db, factory):
    trip = factory.scenario(capacity=1)
    first = reserve(db, factory, trip, seats=("1A",), intent="pi_first")
    ReservationService(db).update_status(first.id, "cancelled", trip.driver_id)

    second = reserve(db, factory, trip, seats=("1A",), intent="pi_second")
    assert second.seats == ["1A"]
    assert factory.reload(Trip, trip.id).available_seats == 0


def test_completed_reservation_cannot_be_cancelled(db, factory):
    trip = factory.scenario()
    reservation = reserve(db, factory, trip)
    service = ReservationService(db)
    service.update_status(reservation.id, "completed", trip.driver_id)
    with pytest.raises(InvalidStatusTransitionError):
        service.update_status(reservation.id, "cancelled", trip.driver_id)


def test_cancel_on_completed_trip_rejected(db, factory):
    trip = factory.scenario(capacity=4)
    reservation = reserve(db, factory, trip)
    db.query(Trip).filter(Trip.id == trip.id).update({Trip.status: "completed"})
    db.commit()

    with pytest.raises(InvalidStatusTransitionError):
        ReservationService(db).update_status(reservation.id, "cancelled", trip.driver_id)
    assert factory.reload(Trip, trip.id).available_seats == 3


def test_status_change_by_other_driver_rejected(db, factory):
    trip = factory.scenario()
    reservation = reserve(db, factory, trip)
    stranger = factory.driver()
    with pytest.raises(AccessDeniedError):
        ReservationService(db).update_status(reservation.id, "cancelled", stranger.id)


# ────────────────────────── walk-ins ────────────────────────────────────────

def test_direct_reservation_takes_seats_immediately(db, factory):
    trip = factory.scenario(capacity=4)

    reservation = ReservationService(db).create_direct_reservation(walk_in(factory, trip, seats=("5A", "5B")))

    assert reservation.status == "confirmed"
    assert reservation.temp_booking_id is None
    assert reservation.total_price == Decimal("50.00")
    assert sorted(s.seat_number for s in reservation.booked_seats) == ["5A", "5B"]
    assert factory.reload(Trip, trip.id).available_seats == 2


def test_direct_reservation_rejects_booked_seat(db, factory):
    trip = factory.scenario(capacity=4)
    reserve(db, factory, trip, seats=("5A",))
    with pytest.raises(SeatSelectionError):
        ReservationService(db).create_direct_reservation(walk_in(factory, trip, seats=("5A",)))


def test_direct_reservation_on_full_trip(db, factory):
    trip = factory.scenario(capacity=1)
    reserve(db, factory, trip, seats=("1A",))
    with pytest.raises(CapacityConflictError):
        ReservationService(db).create_direct_reservation(walk_in(factory, trip, seats=("2A",)))


def test_direct_reservation_requires_trip_owner(db, factory):
    trip = factory.scenario()
    stranger = factory.driver()
    with pytest.raises(AccessDeniedError):
        ReservationService(db).create_direct_reservation(walk_in(factory, trip, driver_id=stranger.id))


# ────────────────────────── lookups ─────────────────────────────────────────

def test_lookup_by_reference_is_case_insensitive(db, factory):
    trip = factory.scenario()
    reservation = reserve(db, factory, trip)
    found = ReservationService(db).get_by_reference(f" {reservation.booking_reference.lower()} ")
    assert found.id == reservation.id


def test_trip_reservations_for_owner_only(db, factory):
    trip = factory.scenario()
    first = reserve(db, factory, trip, seats=("1A",), intent="pi_1")
    second = reserve(db, factory, trip, seats=("1B",), intent="pi_2")
    service = ReservationService(db)

    assert [r.id for r in service.get_trip_reservations(trip.id, trip.driver_id)] == [first.id, second.id]
    with pytest.raises(AccessDeniedError):
        service.get_trip_reservations(trip.id, factory.driver().id)


def test_driver_stats(db, factory):
    trip = factory.scenario(capacity=4)
    kept = reserve(db, factory, trip, seats=("1A", "1B"), intent="pi_kept")
    dropped = reserve(db, factory, trip, seats=("2A",), intent="pi_dropped")
    service = ReservationService(db)
    service.update_status(dropped.id, "cancelled", trip.driver_id)

    stats = service.get_driver_stats(trip.driver_id)

    assert stats.total_reservations == 2
    assert stats.by_status["confirmed"] == 1
    assert stats.by_status["cancelled"] == 1
    assert stats.total_revenue == kept.total_price
    assert stats.total_passengers == 2
