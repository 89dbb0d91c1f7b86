import logging
from fastapi import APIRouter, Depends, HTTPException, status, Header, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from src.config import settings
from src.database import get_db
from src.payments.schemas import PaymentResponse, PaymentStatusResponse, WebhookAck
from src.payments.service import PaymentService
from src.payments.webhook import WebhookError, verify_signature, parse_event

logger = logging.getLogger(__name__)

router = APIRouter()

async def raw_body(request: Request) -> bytes:
    return await request.body()

@router.post("/webhook", response_model=WebhookAck)
def payment_webhook(
    body: bytes = Depends(raw_body),
    x_webhook_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """Receive payment processor events"""
    try:
        verify_signature(body, x_webhook_signature, settings.PAYMENT_WEBHOOK_SECRET)
        event = parse_event(body)
        return PaymentService(db).handle_event(event)
    except WebhookError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.exception("Webhook processing failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process webhook: {str(e)}"
        )

@router.get("/holds/{temp_booking_id}/status", response_model=PaymentStatusResponse)
def get_payment_status(temp_booking_id: str, db: Session = Depends(get_db)):
    """Check the payment and booking outcome of a hold"""
    return PaymentService(db).get_payment_status(temp_booking_id)

@router.get("/reconciliation", response_model=List[PaymentResponse])
def get_reconciliation_payments(db: Session = Depends(get_db)):
    """Captured payments that produced no reservation"""
    return PaymentService(db).get_reconciliation_payments()
