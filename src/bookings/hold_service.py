import logging
import uuid
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from datetime import datetime, timedelta
from decimal import Decimal

from src.bookings.references import generate_booking_reference
from src.bookings.schemas import (
    SeatRequest, HoldCreate, RoundTripHoldCreate, BookingPrice, HoldResponse,
    RoundTripHoldResponse, CleanupResult, PassengerContact
)
from src.clock import utc_now
from src.config import settings
from src.exceptions import (
    HoldNotFoundError, HoldExpiredError, InvalidSegmentError, StationNotOnTripError,
    SeatSelectionError, CapacityConflictError, TripNotBookableError,
    InvalidStatusTransitionError, NotFoundError
)
from src.fleet.service import calculate_luggage_fee
from src.models import Trip, TripStation, TempBooking, Payment
from src.routes.fare_service import SegmentPricingService, normalize_city, to_money
from src.trips.service import TripService, apply_round_trip_discount, validate_round_trip_discount

logger = logging.getLogger(__name__)

OPEN_HOLD_STATUSES = ("pending", "processing")


def is_hold_expired(hold: TempBooking, now: Optional[datetime] = None) -> bool:
    """A hold is expired once marked so or once its deadline has passed"""
    if hold.status == "expired":
        return True
    if hold.status == "completed":
        return False
    return (now or utc_now()) >= hold.expires_at


def hold_response(hold: TempBooking, now: Optional[datetime] = None) -> HoldResponse:
    return HoldResponse(
        id=hold.id,
        trip_id=hold.trip_id,
        passenger_id=hold.passenger_id,
        passenger_name=hold.passenger_name,
        passenger_email=hold.passenger_email,
        passenger_phone=hold.passenger_phone,
        pickup_station_id=hold.pickup_station_id,
        dropoff_station_id=hold.dropoff_station_id,
        selected_seats=list(hold.selected_seats or []),
        number_of_bags=hold.number_of_bags,
        segment_price=hold.segment_price,
        luggage_fee=hold.luggage_fee,
        total_price=hold.total_price,
        booking_reference=hold.booking_reference,
        payment_intent_id=hold.payment_intent_id,
        booking_group_id=hold.booking_group_id,
        status=hold.status,
        failure_reason=hold.failure_reason,
        expires_at=hold.expires_at,
        created_at=hold.created_at,
        is_expired=is_hold_expired(hold, now)
    )


class BookingValidator:
    """Checks a seat request against a trip and prices it.

    Shared by holds and driver walk-in reservations.
    """

    def __init__(self, db: Session):
        self.db = db
        self.trips = TripService(db)
        self.pricing = SegmentPricingService(db)

    def get_bookable_trip(self, trip_id: int) -> Trip:
        trip = self.trips.get_trip(trip_id)
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")
        if trip.status != "scheduled":
            raise TripNotBookableError(f"Trip {trip_id} is {trip.status} and cannot be booked")
        return trip

    def validate_stations(self, trip: Trip, pickup_station_id: int, dropoff_station_id: int) -> Tuple[TripStation, TripStation]:
        """Pickup and dropoff must be stops of this trip, in travel order"""
        stations = {station.id: station for station in trip.stations}

        pickup = stations.get(pickup_station_id)
        if pickup is None:
            raise StationNotOnTripError(f"Pickup station {pickup_station_id} is not on trip {trip.id}")
        dropoff = stations.get(dropoff_station_id)
        if dropoff is None:
            raise StationNotOnTripError(f"Dropoff station {dropoff_station_id} is not on trip {trip.id}")

        if not pickup.is_pickup_point:
            raise StationNotOnTripError(f"Station {pickup_station_id} is not a pickup point")
        if not dropoff.is_dropoff_point:
            raise StationNotOnTripError(f"Station {dropoff_station_id} is not a dropoff point")

        if pickup.sequence_order >= dropoff.sequence_order:
            raise InvalidSegmentError("Pickup must come before dropoff in the direction of travel")

        return pickup, dropoff

    def validate_seats(self, trip: Trip, seats: List[str]) -> List[str]:
        cleaned = [str(seat).strip() for seat in seats]
        if not cleaned or any(not seat for seat in cleaned):
            raise SeatSelectionError("At least one seat must be selected")
        if len(set(cleaned)) != len(cleaned):
            raise SeatSelectionError("Seat numbers must be unique")

        booked = set(self.trips.get_booked_seat_numbers(trip.id))
        taken = [seat for seat in cleaned if seat in booked]
        if taken:
            raise SeatSelectionError(f"Seat(s) already booked: {', '.join(taken)}")

        if len(cleaned) > trip.available_seats:
            raise CapacityConflictError(
                f"Only {trip.available_seats} seat(s) left on trip {trip.id}; {len(cleaned)} requested"
            )
        return cleaned

    def price(
        self,
        trip: Trip,
        pickup: TripStation,
        dropoff: TripStation,
        seat_count: int,
        number_of_bags: int,
        discount: Optional[Decimal] = None
    ) -> BookingPrice:
        """total = segment price x seats (less any round-trip discount) + luggage fee"""
        quote = self.pricing.quote_trip_segment(trip, pickup.city_name, dropoff.city_name)
        luggage_fee = calculate_luggage_fee(trip.luggage_policy, number_of_bags)

        seat_subtotal = to_money(quote.segment_price * seat_count)
        discount_amount, discounted = apply_round_trip_discount(seat_subtotal, discount)

        return BookingPrice(
            segment_price=quote.segment_price,
            seat_count=seat_count,
            seat_subtotal=seat_subtotal,
            discount_amount=discount_amount,
            luggage_fee=luggage_fee,
            total_price=discounted + luggage_fee
        )

    def validate(self, request: SeatRequest, discount: Optional[Decimal] = None):
        """Validate a seat request; returns (trip, pickup, dropoff, seats, price)"""
        trip = self.get_bookable_trip(request.trip_id)
        pickup, dropoff = self.validate_stations(trip, request.pickup_station_id, request.dropoff_station_id)
        seats = self.validate_seats(trip, request.seats)
        price = self.price(trip, pickup, dropoff, len(seats), request.number_of_bags, discount)
        return trip, pickup, dropoff, seats, price


class HoldService:
    """Short-lived seat holds awaiting payment.

    Creating a hold never touches trips.available_seats; seats are only
    taken when a paid hold is converted into a reservation.
    """

    def __init__(self, db: Session):
        self.db = db
        self.validator = BookingValidator(db)

    def _new_hold(
        self,
        request: SeatRequest,
        passenger: PassengerContact,
        price: BookingPrice,
        seats: List[str],
        now: datetime,
        booking_group_id: Optional[str] = None
    ) -> TempBooking:
        hold = TempBooking(
            id=str(uuid.uuid4()),
            trip_id=request.trip_id,
            passenger_id=passenger.passenger_id,
            passenger_name=passenger.full_name,
            passenger_email=passenger.email,
            passenger_phone=passenger.phone,
            pickup_station_id=request.pickup_station_id,
            dropoff_station_id=request.dropoff_station_id,
            selected_seats=seats,
            number_of_bags=request.number_of_bags,
            segment_price=price.segment_price,
            luggage_fee=price.luggage_fee,
            total_price=price.total_price,
            booking_reference=generate_booking_reference(self.db),
            booking_group_id=booking_group_id,
            status="pending",
            expires_at=now + timedelta(minutes=settings.HOLD_TTL_MINUTES),
            created_at=now
        )
        self.db.add(hold)
        # Flush so the next reference check sees this one
        self.db.flush()
        return hold

    def create_hold(self, request: HoldCreate) -> HoldResponse:
        """Validate the request, price it and hold the seats for HOLD_TTL_MINUTES"""
        _, _, _, seats, price = self.validator.validate(request)

        now = utc_now()
        hold = self._new_hold(request, request.passenger, price, seats, now)
        self.db.commit()
        self.db.refresh(hold)

        logger.info(
            "Hold %s created on trip %s for seats %s, total %s, expires %s",
            hold.id, hold.trip_id, seats, hold.total_price, hold.expires_at
        )
        return hold_response(hold, now)

    def create_round_trip_hold(self, request: RoundTripHoldCreate) -> RoundTripHoldResponse:
        """Hold both legs of a driver-linked round trip under one booking group"""
        outbound_trip = self.validator.get_bookable_trip(request.outbound.trip_id)
        if outbound_trip.return_trip_id != request.return_leg.trip_id:
            raise TripNotBookableError(
                f"Trip {request.return_leg.trip_id} is not the return trip of trip {outbound_trip.id}"
            )
        discount = validate_round_trip_discount(outbound_trip.round_trip_discount or 0)

        _, pickup, dropoff, outbound_seats, outbound_price = self.validator.validate(request.outbound, discount)
        _, return_pickup, return_dropoff, return_seats, return_price = self.validator.validate(
            request.return_leg, discount
        )

        # The discount only covers the same journey back
        if (normalize_city(return_pickup.city_name) != normalize_city(dropoff.city_name)
                or normalize_city(return_dropoff.city_name) != normalize_city(pickup.city_name)):
            raise InvalidSegmentError(
                f"Return leg must travel {dropoff.city_name} -> {pickup.city_name}, "
                f"got {return_pickup.city_name} -> {return_dropoff.city_name}"
            )

        now = utc_now()
        group_id = str(uuid.uuid4())
        outbound = self._new_hold(request.outbound, request.passenger, outbound_price, outbound_seats, now, group_id)
        return_hold = self._new_hold(request.return_leg, request.passenger, return_price, return_seats, now, group_id)
        self.db.commit()
        self.db.refresh(outbound)
        self.db.refresh(return_hold)

        logger.info(
            "Round-trip holds %s and %s created in group %s at discount %s",
            outbound.id, return_hold.id, group_id, discount
        )
        return RoundTripHoldResponse(
            booking_group_id=group_id,
            outbound=hold_response(outbound, now),
            return_hold=hold_response(return_hold, now),
            discount_rate=discount,
            total_price=outbound.total_price + return_hold.total_price
        )

    def get_hold_record(self, hold_id: str) -> Optional[TempBooking]:
        return self.db.query(TempBooking).filter(TempBooking.id == hold_id).first()

    def get_hold(self, hold_id: str) -> Optional[HoldResponse]:
        """Hold with its is_expired flag, or None"""
        hold = self.get_hold_record(hold_id)
        return hold_response(hold) if hold else None

    def get_group_holds(self, booking_group_id: str) -> List[TempBooking]:
        return self.db.query(TempBooking).filter(
            TempBooking.booking_group_id == booking_group_id
        ).order_by(TempBooking.created_at, TempBooking.id).all()

    def _expire(self, hold: TempBooking, reason: str = "expired"):
        self.db.query(TempBooking).filter(
            TempBooking.id == hold.id,
            TempBooking.status.in_(OPEN_HOLD_STATUSES)
        ).update(
            {TempBooking.status: "expired", TempBooking.failure_reason: reason},
            synchronize_session=False
        )

    def attach_payment_intent(self, hold_id: str, payment_intent_id: str) -> HoldResponse:
        """Record the processor's payment intent; pending -> processing"""
        hold = self.get_hold_record(hold_id)
        if not hold:
            raise HoldNotFoundError(f"Hold {hold_id} not found")
        if hold.status == "completed":
            raise InvalidStatusTransitionError(f"Hold {hold_id} has already been converted")

        now = utc_now()
        if is_hold_expired(hold, now):
            self._expire(hold)
            self.db.commit()
            raise HoldExpiredError()

        if hold.payment_intent_id == payment_intent_id and hold.status == "processing":
            return hold_response(hold, now)

        if hold.payment_intent_id and hold.payment_intent_id != payment_intent_id:
            # Replaced intent; the old one can no longer complete this hold
            self.db.query(Payment).filter(
                Payment.temp_booking_id == hold.id,
                Payment.payment_intent_id == hold.payment_intent_id,
                Payment.status == "pending"
            ).update({Payment.status: "cancelled"}, synchronize_session=False)

        existing = self.db.query(Payment).filter(
            Payment.temp_booking_id == hold.id,
            Payment.payment_intent_id == payment_intent_id
        ).first()
        if not existing:
            self.db.add(Payment(
                temp_booking_id=hold.id,
                payment_intent_id=payment_intent_id,
                amount=hold.total_price,
                currency=settings.CURRENCY,
                status="pending",
                created_at=now
            ))

        hold.payment_intent_id = payment_intent_id
        hold.status = "processing"
        self.db.commit()
        self.db.refresh(hold)

        logger.info("Hold %s awaiting payment intent %s", hold.id, payment_intent_id)
        return hold_response(hold, now)

    def attach_payment_intent_to_group(self, booking_group_id: str, payment_intent_id: str) -> List[HoldResponse]:
        """Attach one payment intent to every hold of a round-trip group"""
        holds = self.get_group_holds(booking_group_id)
        if not holds:
            raise HoldNotFoundError(f"Booking group {booking_group_id} not found")
        return [self.attach_payment_intent(hold.id, payment_intent_id) for hold in holds]

    def abandon_hold(self, hold_id: str) -> HoldResponse:
        """Passenger walked away; the hold expires and nothing is released"""
        hold = self.get_hold_record(hold_id)
        if not hold:
            raise HoldNotFoundError(f"Hold {hold_id} not found")
        if hold.status == "completed":
            raise InvalidStatusTransitionError(f"Hold {hold_id} has already been converted")

        if hold.status != "expired":
            self._expire(hold)
            self.db.commit()
            self.db.refresh(hold)
            logger.info("Hold %s abandoned", hold_id)

        return hold_response(hold)

    def cleanup_expired_holds(self) -> CleanupResult:
        """Delete holds that are marked expired or past their deadline.

        Converted holds go once their deadline has passed; the reservation
        keeps temp_booking_id, so redelivered payments still resolve to it.
        Pending payments of deleted holds are cancelled. Payments already
        flagged for refund are left untouched.
        """
        now = utc_now()
        stale = self.db.query(TempBooking).filter(
            (TempBooking.status == "expired") |
            (TempBooking.status.in_(OPEN_HOLD_STATUSES + ("completed",)) & (TempBooking.expires_at <= now))
        ).all()

        if not stale:
            return CleanupResult(deleted_holds=0, cancelled_payments=0)

        hold_ids = [hold.id for hold in stale]
        cancelled = self.db.query(Payment).filter(
            Payment.temp_booking_id.in_(hold_ids),
            Payment.status == "pending"
        ).update({Payment.status: "cancelled"}, synchronize_session=False)

        deleted = self.db.query(TempBooking).filter(
            TempBooking.id.in_(hold_ids)
        ).delete(synchronize_session=False)
        self.db.commit()

        logger.info("Cleanup removed %d expired hold(s), cancelled %d payment(s)", deleted, cancelled)
        return CleanupResult(deleted_holds=deleted, cancelled_payments=cancelled)
