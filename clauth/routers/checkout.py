from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..auth import AuthenticatedUser, get_optional_user
from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import check_maintenance
from ..services.gateway import PaymentGateway, get_payment_gateway
from ..services.payments import CheckoutRequest, CheckoutSession, start_checkout

router = APIRouter(
    prefix="/checkout",
    tags=["Checkout"],
    dependencies=[Depends(check_maintenance)]
)

@router.post("", response_model=CheckoutSession)
def create_checkout_session(
    request: CheckoutRequest,
    session: Session = Depends(get_session),
    current_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    return start_checkout(session, gateway, settings, request, current_user)
