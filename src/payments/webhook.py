import hashlib
import hmac
import json
import logging
from typing import Optional

from src.payments.schemas import WebhookEvent

logger = logging.getLogger(__name__)

SUCCEEDED = "payment_intent.succeeded"
FAILED = "payment_intent.payment_failed"
CANCELED = "payment_intent.canceled"


class WebhookError(ValueError):
    """Malformed or unauthenticated webhook delivery"""


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]):
    """Check the hex HMAC-SHA256 of the raw body; unsigned events pass when no secret is set"""
    if not secret:
        logger.warning("PAYMENT_WEBHOOK_SECRET is not set; accepting unsigned webhook")
        return
    if not signature:
        raise WebhookError("Missing webhook signature")
    if not hmac.compare_digest(compute_signature(body, secret), signature.strip().lower()):
        raise WebhookError("Invalid webhook signature")


def parse_event(body: bytes) -> WebhookEvent:
    """Read ``{type, data: {object: {id, metadata}}}`` from a processor event"""
    try:
        payload = json.loads(body or b"")
    except ValueError:
        raise WebhookError("Webhook body is not valid JSON")

    if not isinstance(payload, dict):
        raise WebhookError("Webhook body must be a JSON object")

    event_type = payload.get("type")
    data = payload.get("data")
    intent = data.get("object") if isinstance(data, dict) else None
    if not event_type or not isinstance(intent, dict) or not intent.get("id"):
        raise WebhookError("Webhook event is missing type or payment intent")

    metadata = intent.get("metadata") or {}
    failure = intent.get("last_payment_error") or {}

    return WebhookEvent(
        event_type=event_type,
        payment_intent_id=intent["id"],
        temp_booking_id=metadata.get("tempBookingId"),
        booking_group_id=metadata.get("bookingGroupId"),
        failure_message=failure.get("message") if isinstance(failure, dict) else None
    )
