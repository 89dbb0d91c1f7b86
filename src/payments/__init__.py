"""
Payments Module

The card processor is external; this module records payment intents against
holds and reacts to the processor's webhook events.

- Signed webhook intake (HMAC-SHA256 over the raw body)
- Succeeded events convert the hold into a reservation
- Failed and canceled events update the pending payment only
- Payment status for the checkout page and a refund reconciliation list

Key Components:
- webhook.py: Signature verification and event parsing
- service.py: Event handling, payment status and reconciliation
- router.py: FastAPI endpoints for payments
- schemas.py: Pydantic models for request/response structures
"""

from .router import router
from .service import PaymentService
from .webhook import verify_signature, parse_event, compute_signature, WebhookError
from .schemas import PaymentResponse, PaymentStatusResponse, WebhookEvent, WebhookAck

__all__ = [
    "router",
    "PaymentService",
    "verify_signature",
    "parse_event",
    "compute_signature",
    "WebhookError",
    "PaymentResponse",
    "PaymentStatusResponse",
    "WebhookEvent",
    "WebhookAck"
]
