"""
Payment-to-reservation conversion.
Covers:
- A paid hold becomes one confirmed reservation and takes its seats
- Repeated deliveries return the same reservation
- Expired holds and lost capacity races flag the payment for refund
- No overselling when holds for the last seat are paid at the same time
- Round-trip groups convert and link both legs
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from src.bookings.conversion_service import ConversionService
from src.bookings.hold_service import HoldService
from src.bookings.schemas import RoundTripHoldCreate, SeatRequest, PassengerContact
from src.exceptions import (
    HoldExpiredError, CapacityConflictError, SeatConflictError,
    PaymentMismatchError, HoldNotFoundError, InvalidSegmentError
)
from src.models import Trip, TempBooking, Reservation, BookedSeat, Payment


def refund_payments(db):
    db.expire_all()
    return db.query(Payment).filter(
        Payment.status == "succeeded", Payment.reservation_id.is_(None)
    ).all()


# ────────────────────────── single hold ─────────────────────────────────────

def test_paid_hold_becomes_confirmed_reservation(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, seats=("1A", "1B"), payment_intent_id="pi_ok")

    result = ConversionService(db).convert_hold(hold.id, "pi_ok")

    assert result.already_processed is False
    reservation = result.reservation
    assert reservation.status == "confirmed"
    assert reservation.temp_booking_id == hold.id
    assert reservation.booking_reference == hold.booking_reference
    assert reservation.total_price == hold.total_price
    assert reservation.seats == ["1A", "1B"]

    assert factory.reload(Trip, trip.id).available_seats == 2
    assert factory.reload(TempBooking, hold.id).status == "completed"
    payment = db.query(Payment).filter(Payment.payment_intent_id == "pi_ok").one()
    assert payment.status == "succeeded"
    assert payment.reservation_id == reservation.id
    assert payment.paid_at is not None


def test_conversion_is_idempotent(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, seats=("2A",), payment_intent_id="pi_twice")
    service = ConversionService(db)

    first = service.convert_hold(hold.id, "pi_twice")
    second = service.convert_hold(hold.id, "pi_twice")

    assert second.already_processed is True
    assert second.reservation.id == first.reservation.id
    assert db.query(Reservation).count() == 1
    assert db.query(BookedSeat).count() == 1
    assert factory.reload(Trip, trip.id).available_seats == 3


def test_hold_without_intent_is_not_converted(db, factory):
    trip = factory.scenario()
    hold = factory.hold(trip)
    with pytest.raises(PaymentMismatchError):
        ConversionService(db).convert_hold(hold.id)
    assert db.query(Reservation).count() == 0


def test_intent_of_another_hold_is_rejected(db, factory):
    trip = factory.scenario()
    hold = factory.hold(trip, payment_intent_id="pi_mine")
    with pytest.raises(PaymentMismatchError):
        ConversionService(db).convert_hold(hold.id, "pi_someone_else")
    assert factory.reload(TempBooking, hold.id).status == "processing"


def test_intent_given_at_conversion_is_recorded(db, factory):
    trip = factory.scenario()
    hold = factory.hold(trip)
    result = ConversionService(db).convert_hold(hold.id, "pi_late_attach")
    payment = db.query(Payment).filter(Payment.payment_intent_id == "pi_late_attach").one()
    assert payment.reservation_id == result.reservation.id
    assert factory.reload(TempBooking, hold.id).payment_intent_id == "pi_late_attach"


def test_replaced_intent_that_still_gets_paid_is_flagged(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, payment_intent_id="pi_old")
    HoldService(db).attach_payment_intent(hold.id, "pi_new")
    service = ConversionService(db)

    with pytest.raises(PaymentMismatchError) as exc:
        service.convert_hold(hold.id, "pi_old")

    assert exc.value.reason == "payment_mismatch"
    assert factory.reload(TempBooking, hold.id).status == "processing"
    [refund] = refund_payments(db)
    assert refund.payment_intent_id == "pi_old"
    assert refund.failure_reason == "payment_mismatch"

    # The current intent still completes the hold
    reservation = service.convert_hold(hold.id, "pi_new").reservation
    assert factory.reload(Trip, trip.id).available_seats == 3
    assert [p.payment_intent_id for p in refund_payments(db)] == ["pi_old"]
    paid = db.query(Payment).filter(Payment.payment_intent_id == "pi_new").one()
    assert paid.reservation_id == reservation.id


def test_replaced_intent_paid_after_conversion_is_flagged(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, payment_intent_id="pi_old")
    HoldService(db).attach_payment_intent(hold.id, "pi_new")
    service = ConversionService(db)
    service.convert_hold(hold.id, "pi_new")

    with pytest.raises(PaymentMismatchError):
        service.convert_hold(hold.id, "pi_old")

    assert db.query(Reservation).count() == 1
    assert factory.reload(Trip, trip.id).available_seats == 3
    assert [p.payment_intent_id for p in refund_payments(db)] == ["pi_old"]


def test_redelivery_after_cleanup_returns_the_reservation(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, payment_intent_id="pi_cleaned")
    service = ConversionService(db)
    first = service.convert_hold(hold.id, "pi_cleaned")
    factory.expire(hold.id)

    assert HoldService(db).cleanup_expired_holds().deleted_holds == 1

    again = service.convert_hold(hold.id, "pi_cleaned")
    assert again.already_processed is True
    assert again.reservation.id == first.reservation.id
    assert refund_payments(db) == []


# ────────────────────────── failures ────────────────────────────────────────

def test_expired_hold_fails_and_flags_payment(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, payment_intent_id="pi_slow")
    factory.expire(hold.id)

    with pytest.raises(HoldExpiredError) as exc:
        ConversionService(db).convert_hold(hold.id, "pi_slow")

    assert exc.value.reason == "expired"
    assert db.query(Reservation).count() == 0
    assert factory.reload(Trip, trip.id).available_seats == 4
    record = factory.reload(TempBooking, hold.id)
    assert record.status == "expired"
    assert record.failure_reason == "expired"
    [payment] = refund_payments(db)
    assert payment.payment_intent_id == "pi_slow"
    assert payment.failure_reason == "expired"


def test_expired_hold_fails_the_same_way_on_redelivery(db, factory):
    trip = factory.scenario()
    hold = factory.hold(trip, payment_intent_id="pi_retry")
    factory.expire(hold.id)
    service = ConversionService(db)

    for _ in range(2):
        with pytest.raises(HoldExpiredError):
            service.convert_hold(hold.id, "pi_retry")

    assert db.query(Reservation).count() == 0
    assert len(refund_payments(db)) == 1


def test_last_seat_goes_to_first_paid_hold(db, factory):
    trip = factory.scenario(capacity=1)
    first = factory.hold(trip, seats=("1A",), payment_intent_id="pi_first")
    second = factory.hold(trip, seats=("1B",), payment_intent_id="pi_second")
    service = ConversionService(db)

    service.convert_hold(first.id, "pi_first")
    with pytest.raises(CapacityConflictError) as exc:
        service.convert_hold(second.id, "pi_second")

    assert exc.value.reason == "capacity_conflict"
    assert factory.reload(Trip, trip.id).available_seats == 0
    assert db.query(Reservation).count() == 1
    assert factory.reload(TempBooking, second.id).failure_reason == "capacity_conflict"
    assert [p.payment_intent_id for p in refund_payments(db)] == ["pi_second"]


def test_same_seat_paid_twice_is_a_seat_conflict(db, factory):
    trip = factory.scenario(capacity=4)
    first = factory.hold(trip, seats=("3C",), payment_intent_id="pi_a")
    second = factory.hold(trip, seats=("3C",), payment_intent_id="pi_b")
    service = ConversionService(db)

    service.convert_hold(first.id, "pi_a")
    with pytest.raises(SeatConflictError) as exc:
        service.convert_hold(second.id, "pi_b")

    assert exc.value.reason == "seat_conflict"
    assert factory.reload(Trip, trip.id).available_seats == 3
    assert db.query(BookedSeat).count() == 1
    assert [p.payment_intent_id for p in refund_payments(db)] == ["pi_b"]

    # The recorded reason is replayed on redelivery
    with pytest.raises(SeatConflictError):
        service.convert_hold(second.id, "pi_b")


def test_cancelled_trip_cannot_take_the_payment(db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, payment_intent_id="pi_cancelled_trip")
    db.query(Trip).filter(Trip.id == trip.id).update({Trip.status: "cancelled"})
    db.commit()

    with pytest.raises(CapacityConflictError):
        ConversionService(db).convert_hold(hold.id, "pi_cancelled_trip")
    assert len(refund_payments(db)) == 1


def test_missing_hold_flags_orphan_payment(db, factory):
    trip = factory.scenario()
    hold = factory.hold(trip, payment_intent_id="pi_orphan")
    db.query(TempBooking).filter(TempBooking.id == hold.id).delete()
    db.commit()

    with pytest.raises(HoldNotFoundError):
        ConversionService(db).convert_hold(hold.id, "pi_orphan")

    [payment] = refund_payments(db)
    assert payment.failure_reason == "hold_missing"


def test_unknown_hold_without_payment_is_not_found(db, factory):
    with pytest.raises(HoldNotFoundError):
        ConversionService(db).convert_hold("does-not-exist", "pi_nothing")
    assert refund_payments(db) == []


# ────────────────────────── concurrency ─────────────────────────────────────

def test_concurrent_conversions_never_oversell(session_factory, db, factory):
    trip = factory.scenario(capacity=1)
    holds = [
        factory.hold(trip, seats=(f"{n}A",), payment_intent_id=f"pi_race_{n}")
        for n in range(1, 5)
    ]
    start = threading.Barrier(len(holds))

    def pay(hold):
        session = session_factory()
        try:
            start.wait()
            ConversionService(session).convert_hold(hold.id, hold.payment_intent_id)
            return "ok"
        except CapacityConflictError:
            return "conflict"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(holds)) as pool:
        outcomes = list(pool.map(pay, holds))

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == len(holds) - 1
    assert factory.reload(Trip, trip.id).available_seats == 0
    assert db.query(Reservation).count() == 1
    assert len(refund_payments(db)) == len(holds) - 1


def test_concurrent_redeliveries_create_one_reservation(session_factory, db, factory):
    trip = factory.scenario(capacity=4)
    hold = factory.hold(trip, seats=("1A", "1B"), payment_intent_id="pi_dup")
    start = threading.Barrier(3)

    def deliver(_):
        session = session_factory()
        try:
            start.wait()
            result = ConversionService(session).convert_hold(hold.id, "pi_dup")
            return result.reservation.id
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=3) as pool:
        reservation_ids = list(pool.map(deliver, range(3)))

    assert len(set(reservation_ids)) == 1
    assert db.query(Reservation).count() == 1
    assert factory.reload(Trip, trip.id).available_seats == 2


# ────────────────────────── round trips ─────────────────────────────────────

def round_trip_holds(db, factory, trip, back, there=("A", "C"), home=("C", "A")):
    request = RoundTripHoldCreate(
        outbound=SeatRequest(
            trip_id=trip.id,
            pickup_station_id=factory.station(trip, there[0]).id,
            dropoff_station_id=factory.station(trip, there[1]).id,
            seats=["1A"]
        ),
        return_leg=SeatRequest(
            trip_id=back.id,
            pickup_station_id=factory.station(back, home[0]).id,
            dropoff_station_id=factory.station(back, home[1]).id,
            seats=["1A"]
        ),
        passenger=PassengerContact(full_name="Pat Passenger", email="pat@example.com", phone="555-0199")
    )
    return HoldService(db).create_round_trip_hold(request)


def test_round_trip_group_converts_and_links(db, factory):
    trip = factory.scenario(capacity=4)
    back = factory.return_trip(trip, discount="0.5")
    group = round_trip_holds(db, factory, trip, back)
    HoldService(db).attach_payment_intent_to_group(group.booking_group_id, "pi_rt")

    results = ConversionService(db).convert_booking_group(group.booking_group_id, "pi_rt")

    assert len(results) == 2
    assert results[-1].reservation.linked_reservation_id == results[0].reservation.id
    outbound = factory.reload(Reservation, results[0].reservation.id)
    assert outbound.linked_reservation_id == results[-1].reservation.id
    assert outbound.total_price + results[-1].reservation.total_price == group.total_price
    assert factory.reload(Trip, trip.id).available_seats == 3
    assert factory.reload(Trip, back.id).available_seats == 3


def test_round_trip_group_with_full_return_leg(db, factory):
    trip = factory.scenario(capacity=4)
    back = factory.return_trip(trip, discount="0.5")
    group = round_trip_holds(db, factory, trip, back)
    HoldService(db).attach_payment_intent_to_group(group.booking_group_id, "pi_rt_full")
    db.query(Trip).filter(Trip.id == back.id).update({Trip.available_seats: 0})
    db.commit()

    with pytest.raises(CapacityConflictError):
        ConversionService(db).convert_booking_group(group.booking_group_id, "pi_rt_full")

    # The outbound leg still converts; the return leg is flagged for refund
    db.expire_all()
    reservations = db.query(Reservation).all()
    assert [r.trip_id for r in reservations] == [trip.id]
    assert reservations[0].linked_reservation_id is None
    [refund] = refund_payments(db)
    assert refund.temp_booking_id == group.return_hold.id


def test_round_trip_return_leg_must_mirror_outbound(db, factory):
    trip = factory.scenario(capacity=4)
    back = factory.return_trip(trip, discount="0.5")

    with pytest.raises(InvalidSegmentError):
        round_trip_holds(db, factory, trip, back, there=("A", "B"), home=("C", "B"))
    assert db.query(TempBooking).count() == 0


def test_round_trip_partial_segment_mirrored(db, factory):
    trip = factory.scenario(capacity=4)
    back = factory.return_trip(trip, discount="0.5")

    group = round_trip_holds(db, factory, trip, back, there=("A", "B"), home=("B", "A"))

    assert group.outbound.total_price == Decimal("5.00")
    assert group.return_hold.total_price == Decimal("5.00")


def test_group_redelivery_after_cleanup(db, factory):
    trip = factory.scenario(capacity=4)
    back = factory.return_trip(trip, discount="0.5")
    group = round_trip_holds(db, factory, trip, back)
    HoldService(db).attach_payment_intent_to_group(group.booking_group_id, "pi_rt_clean")
    service = ConversionService(db)
    first = service.convert_booking_group(group.booking_group_id, "pi_rt_clean")
    for hold in (group.outbound, group.return_hold):
        factory.expire(hold.id)
    HoldService(db).cleanup_expired_holds()

    again = service.convert_booking_group(group.booking_group_id, "pi_rt_clean")

    assert all(r.already_processed for r in again)
    assert sorted(r.reservation.id for r in again) == sorted(r.reservation.id for r in first)
    assert factory.reload(Trip, back.id).available_seats == 3
