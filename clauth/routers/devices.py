from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..auth import AuthenticatedUser, get_current_user
from ..database import get_session
from ..dependencies import check_maintenance
from ..models.device import Device, DeviceCreate

router = APIRouter(
    prefix="/devices",
    tags=["Devices"],
    dependencies=[Depends(check_maintenance)]
)

@router.post("", response_model=Device)
def register_device(
    request: DeviceCreate,
    session: Session = Depends(get_session),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    # Same token for the same user only refreshes the device details
    device = session.exec(
        select(Device).where(
            (Device.user_id == current_user.id) &
            (Device.fcm_token == request.fcm_token)
        )
    ).first()
    if not device:
        device = Device(user_id=current_user.id, fcm_token=request.fcm_token)

    device.brand = request.brand
    device.model_name = request.model_name
    device.os_name = request.os_name
    device.os_version = request.os_version
    session.add(device)
    session.commit()
    session.refresh(device)
    return device
