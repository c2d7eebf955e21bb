import json
import logging
from functools import lru_cache

import razorpay
import requests
from fastapi import Depends
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError

from ..config import Settings, get_settings
from ..errors import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

# Razorpay payment status that can still be captured
CAPTURABLE_STATUS = "authorized"

GATEWAY_ERRORS = (BadRequestError, GatewayError, ServerError, requests.RequestException)


class PaymentGateway:
    """Thin wrapper over the Razorpay client.

    Orders are created with ``payment_capture`` off so checkout only
    authorizes funds; capture happens later in the admin approval batch.
    Every call carries a timeout and SDK or transport failures come back as
    ``UpstreamFailure``.
    """

    provider = "razorpay"

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str, timeout: float):
        self.client = razorpay.Client(auth=(key_id, key_secret))
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def _call(self, action: str, fn, *args):
        try:
            return fn(*args, timeout=self.timeout)
        except GATEWAY_ERRORS as e:
            logger.error("Razorpay %s failed: %s", action, e)
            raise UpstreamFailure(f"Payment gateway {action} failed: {e}")

    def create_checkout(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        order_data = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
            "payment_capture": 0
        }
        logger.info("Creating Razorpay order: %s", order_data)
        order = self._call("order creation", self.client.order.create, order_data)
        logger.info("Razorpay order created: %s", order["id"])
        return order

    def verify_webhook(self, body: bytes, signature: str) -> dict:
        try:
            self.client.utility.verify_webhook_signature(
                body.decode("utf-8"), signature, self.webhook_secret
            )
        except (SignatureVerificationError, UnicodeDecodeError):
            logger.warning("Rejected webhook with invalid signature")
            raise ValidationError("Invalid webhook signature")
        try:
            return json.loads(body)
        except ValueError:
            raise ValidationError("Malformed webhook body")

    def order_notes(self, order_id: str) -> dict:
        order = self._call("order fetch", self.client.order.fetch, order_id)
        return order.get("notes") or {}

    def payment_status(self, intent_id: str) -> str:
        payment = self._call("payment fetch", self.client.payment.fetch, intent_id)
        return payment["status"]

    def capture(self, intent_id: str, amount: int, currency: str) -> dict:
        return self._call("capture", self.client.payment.capture, intent_id, amount, {"currency": currency})

    def refund(self, intent_id: str, amount: int) -> dict:
        return self._call("refund", self.client.payment.refund, intent_id, amount, {})


@lru_cache
def _build_gateway(key_id: str, key_secret: str, webhook_secret: str, timeout: float) -> PaymentGateway:
    return PaymentGateway(key_id, key_secret, webhook_secret, timeout)


def get_payment_gateway(settings: Settings = Depends(get_settings)) -> PaymentGateway:
    return _build_gateway(
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        settings.razorpay_webhook_secret,
        settings.gateway_timeout_seconds
    )
