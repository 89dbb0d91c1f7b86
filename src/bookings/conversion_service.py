"""
Payment-to-reservation conversion.

A paid hold becomes a confirmed reservation exactly once. The steps that
touch shared state are conditional UPDATEs so that concurrent deliveries and
competing holds are decided by the database:

1. claim the hold (status pending/processing -> completed)
2. decrement trips.available_seats only while enough seats remain
3. insert the reservation and its seats (unique per trip and seat)
4. mark the payment succeeded

Any conflict rolls the whole unit back. The hold is then expired with the
failure reason and the payment is flagged for refund.
"""

import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional

from src.bookings.hold_service import HoldService, is_hold_expired, OPEN_HOLD_STATUSES
from src.bookings.reservation_service import ReservationService, reservation_response
from src.bookings.schemas import ConversionResult
from src.clock import utc_now
from src.config import settings
from src.exceptions import (
    HoldNotFoundError, HoldExpiredError, CapacityConflictError, SeatConflictError,
    PaymentMismatchError, InvalidStatusTransitionError
)
from src.models import TempBooking, Reservation, BookedSeat, Payment, Trip

logger = logging.getLogger(__name__)


class ConversionService:
    def __init__(self, db: Session):
        self.db = db
        self.holds = HoldService(db)
        self.reservations = ReservationService(db)

    def _already_processed(self, reservation: Reservation) -> ConversionResult:
        return ConversionResult(reservation=reservation_response(reservation), already_processed=True)

    def flag_for_refund(
        self,
        hold_id: str,
        payment_intent_id: Optional[str],
        amount,
        reason: str
    ):
        """Record a captured payment that produced no reservation.

        The payment is stored as succeeded with no reservation and a failure
        reason, which is what the reconciliation list reports.
        """
        if not payment_intent_id:
            return

        now = utc_now()
        payment = self.db.query(Payment).filter(
            Payment.temp_booking_id == hold_id,
            Payment.payment_intent_id == payment_intent_id
        ).first()
        if payment is None:
            payment = Payment(
                temp_booking_id=hold_id,
                payment_intent_id=payment_intent_id,
                amount=amount,
                currency=settings.CURRENCY,
                created_at=now
            )
            self.db.add(payment)

        if payment.failure_reason is None:
            logger.error(
                "Payment %s for hold %s captured without a reservation (%s); refund required",
                payment_intent_id, hold_id, reason
            )
        payment.status = "succeeded"
        payment.reservation_id = None
        payment.failure_reason = reason
        payment.paid_at = payment.paid_at or now

    def _fail(self, hold_id: str, payment_intent_id: Optional[str], amount, error):
        """Expire the hold with the error's reason, flag the payment and raise"""
        self.db.query(TempBooking).filter(
            TempBooking.id == hold_id,
            TempBooking.status.in_(OPEN_HOLD_STATUSES)
        ).update(
            {TempBooking.status: "expired", TempBooking.failure_reason: error.reason},
            synchronize_session=False
        )
        self.flag_for_refund(hold_id, payment_intent_id, amount, error.reason)
        self.db.commit()
        raise error

    def _previous_failure(self, reason: Optional[str]):
        if reason == "seat_conflict":
            return SeatConflictError()
        if reason == "capacity_conflict":
            return CapacityConflictError()
        return HoldExpiredError()

    def _reject_intent(self, hold_id: str, payment_intent_id: str, amount, message: str):
        """A captured intent that cannot pay for this hold is flagged for refund"""
        self.flag_for_refund(hold_id, payment_intent_id, amount, "payment_mismatch")
        self.db.commit()
        raise PaymentMismatchError(message, reason="payment_mismatch")

    def _paid_intent(self, reservation_id: int) -> Optional[str]:
        payment = self.db.query(Payment).filter(
            Payment.reservation_id == reservation_id,
            Payment.status == "succeeded"
        ).first()
        return payment.payment_intent_id if payment else None

    def convert_hold(self, hold_id: str, payment_intent_id: Optional[str] = None) -> ConversionResult:
        """Turn a paid hold into a confirmed reservation; safe to call repeatedly"""
        existing = self.reservations.get_by_temp_booking_id(hold_id)
        if existing:
            paid_intent = self._paid_intent(existing.id)
            if payment_intent_id and paid_intent and paid_intent != payment_intent_id:
                self._reject_intent(
                    hold_id, payment_intent_id, existing.total_price,
                    f"Hold {hold_id} was already paid with payment intent {paid_intent}"
                )
            logger.warning("Hold %s already converted to reservation %s", hold_id, existing.id)
            return self._already_processed(existing)

        hold = self.holds.get_hold_record(hold_id)
        if not hold:
            self._flag_orphan_payment(hold_id, payment_intent_id)
            raise HoldNotFoundError(f"Hold {hold_id} not found")

        if payment_intent_id and hold.payment_intent_id and hold.payment_intent_id != payment_intent_id:
            self._reject_intent(
                hold_id, payment_intent_id, hold.total_price,
                f"Payment intent {payment_intent_id} does not belong to hold {hold_id}"
            )
        intent = payment_intent_id or hold.payment_intent_id
        if not intent:
            raise PaymentMismatchError(f"Hold {hold_id} has no payment intent")

        # Capture plain values; ORM state is expired by rollback
        trip_id = hold.trip_id
        seats: List[str] = list(hold.selected_seats or [])
        amount = hold.total_price

        if hold.status == "expired":
            self._fail(hold_id, intent, amount, self._previous_failure(hold.failure_reason))
        if hold.status == "completed":
            raise InvalidStatusTransitionError(f"Hold {hold_id} is completed but has no reservation")
        if is_hold_expired(hold):
            self._fail(hold_id, intent, amount, HoldExpiredError())

        now = utc_now()
        try:
            claimed = self.db.query(TempBooking).filter(
                TempBooking.id == hold_id,
                TempBooking.status.in_(OPEN_HOLD_STATUSES)
            ).update(
                {TempBooking.status: "completed", TempBooking.payment_intent_id: intent},
                synchronize_session=False
            )
            if claimed == 0:
                self.db.rollback()
                return self._after_lost_claim(hold_id, intent)

            decremented = self.db.query(Trip).filter(
                Trip.id == trip_id,
                Trip.available_seats >= len(seats),
                Trip.status == "scheduled"
            ).update(
                {Trip.available_seats: Trip.available_seats - len(seats)},
                synchronize_session=False
            )
            if decremented == 0:
                raise CapacityConflictError(f"Not enough seats left on trip {trip_id}")

            reservation = Reservation(
                trip_id=trip_id,
                passenger_id=hold.passenger_id,
                pickup_station_id=hold.pickup_station_id,
                dropoff_station_id=hold.dropoff_station_id,
                number_of_bags=hold.number_of_bags,
                segment_price=hold.segment_price,
                luggage_fee=hold.luggage_fee,
                total_price=amount,
                passenger_name=hold.passenger_name,
                passenger_email=hold.passenger_email,
                passenger_phone=hold.passenger_phone,
                booking_reference=hold.booking_reference,
                temp_booking_id=hold_id,
                booking_group_id=hold.booking_group_id,
                status="confirmed",
                created_at=now,
                updated_at=now
            )
            reservation.booked_seats = [
                BookedSeat(trip_id=trip_id, seat_number=seat) for seat in seats
            ]
            self.db.add(reservation)
            try:
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                duplicate = self.reservations.get_by_temp_booking_id(hold_id)
                if duplicate:
                    logger.warning("Concurrent delivery for hold %s; reservation %s kept", hold_id, duplicate.id)
                    return self._already_processed(duplicate)
                raise SeatConflictError()

            self._mark_paid(hold_id, intent, amount, reservation.id, now)
            self.db.commit()
        except CapacityConflictError as e:
            self.db.rollback()
            self._fail(hold_id, intent, amount, e)

        self.db.refresh(reservation)
        logger.info(
            "Hold %s converted to reservation %s (%s) on trip %s",
            hold_id, reservation.id, reservation.booking_reference, trip_id
        )

        group_id = reservation.booking_group_id
        if group_id:
            self.reservations.link_group(group_id)
            self.db.refresh(reservation)

        return ConversionResult(reservation=reservation_response(reservation), already_processed=False)

    def _mark_paid(self, hold_id: str, payment_intent_id: str, amount, reservation_id: int, now):
        payment = self.db.query(Payment).filter(
            Payment.temp_booking_id == hold_id,
            Payment.payment_intent_id == payment_intent_id
        ).first()
        if payment is None:
            payment = Payment(
                temp_booking_id=hold_id,
                payment_intent_id=payment_intent_id,
                amount=amount,
                currency=settings.CURRENCY,
                created_at=now
            )
            self.db.add(payment)
        payment.reservation_id = reservation_id
        payment.status = "succeeded"
        payment.failure_reason = None
        payment.paid_at = now

    def _after_lost_claim(self, hold_id: str, payment_intent_id: str) -> ConversionResult:
        """Another worker changed the hold first; report what it decided"""
        existing = self.reservations.get_by_temp_booking_id(hold_id)
        if existing:
            logger.warning("Hold %s claimed by a concurrent delivery", hold_id)
            return self._already_processed(existing)

        hold = self.holds.get_hold_record(hold_id)
        if not hold:
            raise HoldNotFoundError(f"Hold {hold_id} not found")
        self._fail(hold_id, payment_intent_id, hold.total_price, self._previous_failure(hold.failure_reason))

    def _flag_orphan_payment(self, hold_id: str, payment_intent_id: Optional[str]):
        """A payment for a hold that cleanup already removed needs a refund"""
        if not payment_intent_id:
            return
        payment = self.db.query(Payment).filter(
            Payment.temp_booking_id == hold_id,
            Payment.payment_intent_id == payment_intent_id
        ).first()
        if payment and payment.reservation_id is None:
            self.flag_for_refund(hold_id, payment_intent_id, payment.amount, "hold_missing")
            self.db.commit()

    def convert_booking_group(self, booking_group_id: str, payment_intent_id: Optional[str] = None) -> List[ConversionResult]:
        """Convert every hold of a round-trip group; reservations are linked when both succeed.

        Each leg is attempted even when the other fails, so that a failed leg
        is flagged for refund; the first failure is raised afterwards. Legs
        whose hold was cleaned up after conversion are found via their
        reservation.
        """
        hold_ids = [hold.id for hold in self.holds.get_group_holds(booking_group_id)]
        for reservation in self.reservations.get_group_reservations(booking_group_id):
            if reservation.temp_booking_id and reservation.temp_booking_id not in hold_ids:
                hold_ids.append(reservation.temp_booking_id)
        if not hold_ids:
            raise HoldNotFoundError(f"Booking group {booking_group_id} not found")

        results = []
        failure = None
        for hold_id in hold_ids:
            try:
                results.append(self.convert_hold(hold_id, payment_intent_id))
            except (HoldExpiredError, CapacityConflictError, PaymentMismatchError) as e:
                failure = failure or e
        if failure:
            raise failure
        return results
