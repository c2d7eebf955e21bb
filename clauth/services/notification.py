import logging
from functools import lru_cache
from typing import Optional, List
from enum import Enum

import firebase_admin
from fastapi import Depends
from firebase_admin import credentials, messaging
from sqlmodel import Session, select

from ..config import Settings, get_settings
from ..models.device import Device

logger = logging.getLogger(__name__)

class NotificationType(str, Enum):
    CHALLENGE_WINNER = "challenge_winner"
    PREORDER_COLLECTED = "preorder_collected"
    PREORDER_REFUNDED = "preorder_refunded"

class NotificationService:
    """Push notifications over Firebase Cloud Messaging.

    Sending is best effort: failures are logged and reported as False, never
    raised, so a push never breaks the operation that triggered it.
    """

    def __init__(self, credentials_path: Optional[str] = None):
        self.enabled = bool(credentials_path)
        if not self.enabled:
            logger.info("Firebase credentials not configured, push notifications disabled")
            return

        # Initialize Firebase Admin SDK if not already initialized
        try:
            firebase_admin.get_app()
        except ValueError:
            firebase_admin.initialize_app(credentials.Certificate(credentials_path))

    def send_notification(
        self,
        fcm_token: str,
        title: str,
        body: str,
        data: Optional[dict] = None
    ) -> bool:
        try:
            message = messaging.Message(
                notification=messaging.Notification(
                    title=title,
                    body=body,
                ),
                data=data or {},
                token=fcm_token,
            )

            messaging.send(message)
            return True
        except Exception as e:
            logger.warning("Error sending notification: %s", e)
            return False

    def send_notification_to_user(
        self,
        db: Session,
        user_id: int,
        title: str,
        body: str,
        data: Optional[dict] = None
    ) -> List[bool]:
        if not self.enabled:
            return []

        devices = db.exec(
            select(Device).where(Device.user_id == user_id)
        ).all()

        return [
            self.send_notification(fcm_token=device.fcm_token, title=title, body=body, data=data)
            for device in devices
        ]

    def send_challenge_winner(
        self,
        db: Session,
        user_id: int,
        challenge_theme: str,
        challenge_id: int,
        rank: int
    ):
        return self.send_notification_to_user(
            db=db,
            user_id=user_id,
            title="You placed in today's challenge!",
            body=f"Your design finished #{rank} in '{challenge_theme}'",
            data={
                "type": NotificationType.CHALLENGE_WINNER,
                "challenge_id": str(challenge_id),
                "rank": str(rank)
            }
        )

    def send_preorder_collected(self, db: Session, user_id: int, preorder_id: int):
        return self.send_notification_to_user(
            db=db,
            user_id=user_id,
            title="Your preorder is going into production",
            body="The goal was reached and your payment has been collected",
            data={
                "type": NotificationType.PREORDER_COLLECTED,
                "preorder_id": str(preorder_id)
            }
        )

    def send_preorder_refunded(self, db: Session, user_id: int, preorder_id: int):
        return self.send_notification_to_user(
            db=db,
            user_id=user_id,
            title="Your preorder was refunded",
            body="Your payment has been refunded",
            data={
                "type": NotificationType.PREORDER_REFUNDED,
                "preorder_id": str(preorder_id)
            }
        )


@lru_cache
def _build_notification_service(credentials_path: Optional[str]) -> NotificationService:
    return NotificationService(credentials_path)


def get_notification_service(settings: Settings = Depends(get_settings)) -> NotificationService:
    return _build_notification_service(settings.firebase_credentials_json)
