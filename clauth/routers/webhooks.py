import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlmodel import Session

from ..database import get_session
from ..errors import ValidationError
from ..services.gateway import PaymentGateway, get_payment_gateway
from ..services.payments import WebhookOutcome, handle_gateway_event

logger = logging.getLogger(__name__)

# Exempt from maintenance mode
router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"]
)

class WebhookAck(BaseModel):
    received: bool
    outcome: WebhookOutcome

@router.post("/razorpay", response_model=WebhookAck)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    body = await request.body()
    if not x_razorpay_signature:
        logger.warning("Rejected webhook without signature header")
        raise ValidationError("Missing webhook signature")

    event = gateway.verify_webhook(body, x_razorpay_signature)
    outcome = await run_in_threadpool(handle_gateway_event, session, gateway, event)
    if outcome == WebhookOutcome.FAILED:
        logger.error("Webhook acknowledged with internal failure")
    return WebhookAck(received=True, outcome=outcome)
