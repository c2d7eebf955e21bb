from fastapi import APIRouter, Depends
from sqlmodel import Session
from typing import List

from ..auth import AuthenticatedUser, get_current_user, require_admin
from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import check_maintenance
from ..models.preorder import Preorder
from ..services.gateway import PaymentGateway, get_payment_gateway
from ..services.notification import NotificationService, get_notification_service
from ..services.payments import cancel_preorder, list_user_preorders, refund_preorder

router = APIRouter(
    prefix="/preorders",
    tags=["Preorders"],
    dependencies=[Depends(check_maintenance)]
)

@router.get("", response_model=List[Preorder])
def get_my_preorders(
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    return list_user_preorders(session, current_user.id)

@router.delete("/{preorder_id}")
def delete_preorder(
    preorder_id: int,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    cancel_preorder(session, current_user, preorder_id)
    return {"message": "Preorder cancelled"}

@router.post("/{preorder_id}/refund", response_model=Preorder)
def refund(
    preorder_id: int,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(require_admin),
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service)
):
    return refund_preorder(session, gateway, notifier, settings, preorder_id)
