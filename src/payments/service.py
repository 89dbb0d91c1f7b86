import logging
from sqlalchemy.orm import Session
from typing import List, Optional

from src.bookings.conversion_service import ConversionService
from src.bookings.hold_service import is_hold_expired
from src.exceptions import (
    BookingError, HoldExpiredError, CapacityConflictError, HoldNotFoundError, PaymentMismatchError
)
from src.models import Payment, TempBooking, Reservation
from src.payments.schemas import PaymentStatusResponse, WebhookEvent, WebhookAck
from src.payments.webhook import WebhookError, SUCCEEDED, FAILED, CANCELED

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, db: Session):
        self.db = db

    def _set_pending_status(self, payment_intent_id: str, new_status: str, reason: Optional[str] = None) -> int:
        values = {Payment.status: new_status}
        if reason:
            values[Payment.failure_reason] = reason[:255]
        count = self.db.query(Payment).filter(
            Payment.payment_intent_id == payment_intent_id,
            Payment.status == "pending"
        ).update(values, synchronize_session=False)
        self.db.commit()
        return count

    def mark_payment_failed(self, payment_intent_id: str, reason: Optional[str] = None) -> int:
        """Failed charge: pending payments become failed, the hold is left alone"""
        count = self._set_pending_status(payment_intent_id, "failed", reason or "payment_failed")
        if count == 0:
            logger.warning("payment_failed for unknown or settled intent %s", payment_intent_id)
        else:
            logger.info("Payment intent %s failed: %s", payment_intent_id, reason)
        return count

    def mark_payment_canceled(self, payment_intent_id: str) -> int:
        count = self._set_pending_status(payment_intent_id, "cancelled")
        if count == 0:
            logger.warning("canceled event for unknown or settled intent %s", payment_intent_id)
        else:
            logger.info("Payment intent %s cancelled", payment_intent_id)
        return count

    def get_payment_status(self, temp_booking_id: str) -> PaymentStatusResponse:
        """Where a checkout stands, even after the hold itself is gone"""
        reservation = self.db.query(Reservation).filter(
            Reservation.temp_booking_id == temp_booking_id
        ).first()
        if reservation:
            return PaymentStatusResponse(
                temp_booking_id=temp_booking_id,
                status="succeeded",
                booking_reference=reservation.booking_reference,
                reservation_id=reservation.id
            )

        # A refunded replaced intent does not decide the hold's own outcome
        refund = self.db.query(Payment).filter(
            Payment.temp_booking_id == temp_booking_id,
            Payment.status == "succeeded",
            Payment.reservation_id.is_(None),
            Payment.failure_reason != "payment_mismatch"
        ).first()
        if refund:
            return PaymentStatusResponse(
                temp_booking_id=temp_booking_id,
                status="refund_required",
                error=refund.failure_reason
            )

        hold = self.db.query(TempBooking).filter(TempBooking.id == temp_booking_id).first()
        if not hold:
            return PaymentStatusResponse(
                temp_booking_id=temp_booking_id,
                status="failed",
                error="Booking not found or expired"
            )
        if is_hold_expired(hold):
            return PaymentStatusResponse(
                temp_booking_id=temp_booking_id,
                status="failed",
                error="Booking has expired"
            )

        if hold.payment_intent_id:
            payment = self.db.query(Payment).filter(
                Payment.temp_booking_id == hold.id,
                Payment.payment_intent_id == hold.payment_intent_id
            ).first()
            if payment and payment.status in ("failed", "cancelled"):
                return PaymentStatusResponse(
                    temp_booking_id=temp_booking_id,
                    status=payment.status,
                    error=payment.failure_reason
                )

        return PaymentStatusResponse(temp_booking_id=temp_booking_id, status="pending")

    def get_reconciliation_payments(self) -> List[Payment]:
        """Captured payments with no reservation; each one needs a refund"""
        return self.db.query(Payment).filter(
            Payment.status == "succeeded",
            Payment.reservation_id.is_(None)
        ).order_by(Payment.created_at, Payment.id).all()

    def handle_event(self, event: WebhookEvent) -> WebhookAck:
        """Apply a processor event. Business failures are acknowledged, not retried."""
        if event.event_type == FAILED:
            self.mark_payment_failed(event.payment_intent_id, event.failure_message)
            return WebhookAck(status="recorded")

        if event.event_type == CANCELED:
            self.mark_payment_canceled(event.payment_intent_id)
            return WebhookAck(status="recorded")

        if event.event_type != SUCCEEDED:
            logger.info("Ignoring webhook event %s", event.event_type)
            return WebhookAck(status="ignored")

        if not event.temp_booking_id and not event.booking_group_id:
            raise WebhookError("Missing tempBookingId in payment intent metadata")

        conversion = ConversionService(self.db)
        try:
            if event.booking_group_id:
                results = conversion.convert_booking_group(event.booking_group_id, event.payment_intent_id)
            else:
                results = [conversion.convert_hold(event.temp_booking_id, event.payment_intent_id)]
        except (HoldExpiredError, CapacityConflictError, PaymentMismatchError) as e:
            return WebhookAck(status="refund_required", reason=e.reason)
        except HoldNotFoundError as e:
            logger.warning("Webhook for intent %s: %s", event.payment_intent_id, e.message)
            return WebhookAck(status="ignored", reason="hold_not_found")
        except BookingError as e:
            logger.warning("Webhook for intent %s not applied: %s", event.payment_intent_id, e.message)
            return WebhookAck(status="ignored", reason=e.error_code.lower())

        return WebhookAck(
            status="already_processed" if all(r.already_processed for r in results) else "processed",
            reservation_ids=[r.reservation.id for r in results]
        )
