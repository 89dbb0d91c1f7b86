from pydantic import BaseModel
from typing import List, Optional, Literal
from datetime import datetime
from decimal import Decimal

class PaymentResponse(BaseModel):
    id: int
    reservation_id: Optional[int] = None
    temp_booking_id: Optional[str] = None
    payment_intent_id: str
    amount: Decimal
    currency: str
    status: Literal["pending", "succeeded", "failed", "cancelled"]
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PaymentStatusResponse(BaseModel):
    """What the passenger's checkout page polls for"""
    temp_booking_id: str
    status: Literal["pending", "succeeded", "failed", "cancelled", "refund_required"]
    booking_reference: Optional[str] = None
    reservation_id: Optional[int] = None
    error: Optional[str] = None

class WebhookEvent(BaseModel):
    """Fields the webhook reads from a processor event"""
    event_type: str
    payment_intent_id: str
    temp_booking_id: Optional[str] = None
    booking_group_id: Optional[str] = None
    failure_message: Optional[str] = None

class WebhookAck(BaseModel):
    received: bool = True
    status: Literal["processed", "already_processed", "refund_required", "ignored", "recorded"]
    reason: Optional[str] = None
    reservation_ids: List[int] = []
