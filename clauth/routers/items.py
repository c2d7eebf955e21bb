from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from ..auth import require_admin
from ..database import get_session
from ..dependencies import check_maintenance
from ..models.item import ItemKind
from ..services.gateway import PaymentGateway, get_payment_gateway
from ..services.notification import NotificationService, get_notification_service
from ..services.payments import CaptureReport, approve_item

router = APIRouter(
    tags=["Items"],
    dependencies=[Depends(check_maintenance), Depends(require_admin)]
)

class ApproveRequest(BaseModel):
    id: int

@router.post("/plushies/approve", response_model=CaptureReport)
def approve_plushie(
    request: ApproveRequest,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service)
):
    return approve_item(session, gateway, notifier, ItemKind.PLUSHIE, request.id)

@router.post("/clothing/approve", response_model=CaptureReport)
def approve_clothing(
    request: ApproveRequest,
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service)
):
    return approve_item(session, gateway, notifier, ItemKind.CLOTHING, request.id)
