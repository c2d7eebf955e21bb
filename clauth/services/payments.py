"""Preorder payments: checkout, webhook reconciliation, batch capture and refunds.

Preorder:      PENDING -> CONFIRMED -> COLLECTED | REFUNDED
PaymentIntent: REQUIRES_CAPTURE -> SUCCEEDED | FAILED

Every path that creates, deletes or refunds a preorder adjusts the item's
``pledged`` counter in the same transaction, under a row lock on the item.
Capture, cancel and refund lock the preorder row first and re-check its
status under that lock.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..auth import AuthenticatedUser
from ..config import Settings
from ..errors import AlreadyCaptured, Conflict, Forbidden, GoalNotReached, NotFound, ValidationError
from ..models.item import ClothingItem, ItemKind, ItemStatus, Plushie
from ..models.payment import PaymentIntent, PaymentStatus
from ..models.preorder import Preorder, PreorderStatus
from .gateway import CAPTURABLE_STATUS, PaymentGateway
from .notification import NotificationService

logger = logging.getLogger(__name__)

ITEM_MODELS = {
    ItemKind.PLUSHIE: Plushie,
    ItemKind.CLOTHING: ClothingItem,
}

# Preorder column holding the item id for each kind
ITEM_COLUMNS = {
    ItemKind.PLUSHIE: "plushie_id",
    ItemKind.CLOTHING: "clothing_item_id",
}

CAPTURE_PENDING = (PreorderStatus.PENDING, PreorderStatus.CONFIRMED)
CANCELABLE = (PreorderStatus.PENDING, PreorderStatus.CONFIRMED)

GATEWAY_STATUSES = {
    "created": PaymentStatus.REQUIRES_CAPTURE,
    "authorized": PaymentStatus.REQUIRES_CAPTURE,
    "captured": PaymentStatus.SUCCEEDED,
    "refunded": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
}

Item = Union[Plushie, ClothingItem]


class CheckoutRequest(BaseModel):
    plushie_id: Optional[int] = None
    clothing_item_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1, le=100)
    size: Optional[str] = Field(default=None, max_length=10)
    guest_email: Optional[str] = Field(default=None, max_length=100)


class CheckoutSession(BaseModel):
    session_id: str
    amount: int
    currency: str
    key_id: str


class WebhookOutcome(str, Enum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    FAILED = "failed"


class CaptureFailure(BaseModel):
    preorder_id: int
    reason: str


class CaptureReport(BaseModel):
    success: bool
    captured: int
    failed: List[CaptureFailure]
    status: ItemStatus


class CaptureSkipped(Exception):
    """The preorder left the capturable states before its row lock was granted."""


def _locked(session: Session, statement):
    # populate_existing: a copy already in the identity map is overwritten
    # with the row as read under the lock
    return session.exec(
        statement.with_for_update().execution_options(populate_existing=True)
    ).first()


def _lock_item(session: Session, kind: ItemKind, item_id: int) -> Optional[Item]:
    model = ITEM_MODELS[kind]
    pk = getattr(model, ITEM_COLUMNS[kind])
    return _locked(session, select(model).where(pk == item_id))


def _lock_preorder(session: Session, preorder_id: int) -> Optional[Preorder]:
    return _locked(session, select(Preorder).where(Preorder.preorder_id == preorder_id))


def _lock_payment(session: Session, payment_id: int) -> Optional[PaymentIntent]:
    return _locked(session, select(PaymentIntent).where(PaymentIntent.payment_id == payment_id))


def preorder_item_ref(preorder: Preorder) -> Tuple[ItemKind, int]:
    if preorder.plushie_id is not None:
        return ItemKind.PLUSHIE, preorder.plushie_id
    return ItemKind.CLOTHING, preorder.clothing_item_id


def start_checkout(
    session: Session,
    gateway: PaymentGateway,
    settings: Settings,
    request: CheckoutRequest,
    user: Optional[AuthenticatedUser]
) -> CheckoutSession:
    """Open a manual-capture checkout for one item; no local rows are written yet."""
    if (request.plushie_id is None) == (request.clothing_item_id is None):
        raise ValidationError("Provide exactly one of plushie_id or clothing_item_id")

    guest_email = (request.guest_email or "").strip()
    if user is None and not guest_email:
        raise ValidationError("Sign in or provide a guest email")

    if request.plushie_id is not None:
        kind, item_id = ItemKind.PLUSHIE, request.plushie_id
    else:
        kind, item_id = ItemKind.CLOTHING, request.clothing_item_id

    item = session.get(ITEM_MODELS[kind], item_id)
    if not item:
        raise NotFound("Item not found")
    if item.status != ItemStatus.PENDING:
        raise Conflict("Item is not accepting preorders")
    if kind == ItemKind.CLOTHING and not request.size:
        raise ValidationError("Size is required")

    amount = (item.price or settings.preorder_unit_price) * request.quantity
    notes = {
        "item_type": kind.value,
        "item_id": str(item_id),
        "quantity": str(request.quantity),
        "size": request.size or "",
        "user_id": str(user.id) if user else "",
        "guest_email": "" if user else guest_email,
    }
    receipt = f"preorder_{kind.value}_{item_id}_{int(datetime.now(timezone.utc).timestamp())}"
    order = gateway.create_checkout(amount, settings.checkout_currency, receipt, notes)

    return CheckoutSession(
        session_id=order["id"],
        amount=amount,
        currency=settings.checkout_currency,
        key_id=settings.razorpay_key_id
    )


def handle_gateway_event(session: Session, gateway: PaymentGateway, event: dict) -> WebhookOutcome:
    """Apply a verified webhook event.

    Only payment authorizations (checkout completion) create records. Internal
    failures are logged at error level and reported as FAILED rather than
    raised, so the gateway is still acknowledged.
    """
    if not isinstance(event, dict):
        logger.error("Webhook body is not an event object: %r", event)
        return WebhookOutcome.FAILED
    if event.get("event") != "payment.authorized":
        return WebhookOutcome.IGNORED

    payment = _payment_entity(event)
    if not payment:
        logger.error("payment.authorized event without a payment entity")
        return WebhookOutcome.FAILED

    try:
        return record_authorized_payment(session, gateway, payment)
    except Exception:
        session.rollback()
        logger.exception("Failed to record preorder for payment %s", payment.get("id"))
        return WebhookOutcome.FAILED


def _payment_entity(event: dict) -> Optional[dict]:
    node = event
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    if not isinstance(node, dict) or not node.get("id"):
        return None
    return node


def record_authorized_payment(session: Session, gateway: PaymentGateway, payment: dict) -> WebhookOutcome:
    """Create the PaymentIntent and CONFIRMED Preorder for an authorized payment.

    Keyed on the gateway payment id: a redelivered event finds the existing
    PaymentIntent and writes nothing.
    """
    intent_id = payment["id"]
    existing = session.exec(
        select(PaymentIntent).where(PaymentIntent.intent_id == intent_id)
    ).first()
    if existing:
        logger.info("Skipping duplicate delivery for payment %s", intent_id)
        return WebhookOutcome.DUPLICATE

    notes = payment.get("notes") or {}
    if not notes.get("item_id") and payment.get("order_id"):
        notes = gateway.order_notes(payment["order_id"])

    kind = ItemKind(notes["item_type"])
    item_id = int(notes["item_id"])
    quantity = max(1, int(notes.get("quantity") or 1))

    item = _lock_item(session, kind, item_id)
    if not item:
        raise NotFound(f"{kind.value} {item_id} not found")

    intent = PaymentIntent(
        provider=gateway.provider,
        intent_id=intent_id,
        order_id=payment.get("order_id"),
        amount=payment.get("amount") or 0,
        currency=payment.get("currency") or "USD",
        status=GATEWAY_STATUSES.get(payment.get("status"), PaymentStatus.REQUIRES_CAPTURE),
        billing_email=payment.get("email"),
        billing_contact=payment.get("contact"),
        shipping_address=notes.get("shipping_address") or None
    )
    user_id = int(notes["user_id"]) if notes.get("user_id") else None
    try:
        session.add(intent)
        session.flush()

        preorder = Preorder(
            user_id=user_id,
            guest_email=None if user_id else (notes.get("guest_email") or payment.get("email")),
            quantity=quantity,
            size=notes.get("size") or None,
            price=intent.amount,
            status=PreorderStatus.CONFIRMED,
            payment_id=intent.payment_id,
            **{ITEM_COLUMNS[kind]: item_id}
        )
        item.pledged += quantity
        session.add(preorder)
        session.add(item)
        session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event won the unique intent_id race
        session.rollback()
        logger.info("Skipping duplicate delivery for payment %s", intent_id)
        return WebhookOutcome.DUPLICATE

    logger.info("Logged preorder %s for %s %s x%s", preorder.preorder_id, kind.value, item_id, quantity)
    return WebhookOutcome.RECORDED


def _capture_preorder(
    session: Session,
    gateway: PaymentGateway,
    notifier: NotificationService,
    preorder_id: int
) -> Optional[str]:
    """Capture one preorder in its own transaction; returns a failure reason or None.

    Raises CaptureSkipped when, once locked, the preorder is no longer
    awaiting capture (a concurrent approval or cancel got there first).
    """
    preorder = _lock_preorder(session, preorder_id)
    if preorder is None or preorder.status not in CAPTURE_PENDING:
        session.rollback()
        raise CaptureSkipped(preorder_id)
    payment = _lock_payment(session, preorder.payment_id) if preorder.payment_id else None
    if payment is None or not payment.intent_id:
        session.rollback()
        return "No payment intent attached"

    payment_id = payment.payment_id
    try:
        status = gateway.payment_status(payment.intent_id)
        if status != CAPTURABLE_STATUS:
            session.rollback()
            return f"Payment is already {status}"

        gateway.capture(payment.intent_id, payment.amount, payment.currency)
        payment.status = PaymentStatus.SUCCEEDED
        preorder.status = PreorderStatus.COLLECTED
        session.add(payment)
        session.add(preorder)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error("Capture failed for preorder %s: %s", preorder_id, e)
        payment = _lock_payment(session, payment_id)
        if payment.status != PaymentStatus.SUCCEEDED:
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = str(e)[:500]
            session.add(payment)
        session.commit()
        return str(e)

    logger.info("Captured payment for preorder %s", preorder_id)
    if preorder.user_id:
        notifier.send_preorder_collected(session, preorder.user_id, preorder_id)
    return None


def approve_item(
    session: Session,
    gateway: PaymentGateway,
    notifier: NotificationService,
    kind: ItemKind,
    item_id: int
) -> CaptureReport:
    """Capture every outstanding preorder of an item whose goal is met.

    Failures are per preorder: the batch always runs to the end, and the item
    moves to IN_PRODUCTION when at least one capture succeeded.
    """
    item = _lock_item(session, kind, item_id)
    if not item or item.status != ItemStatus.PENDING:
        raise NotFound(f"{kind.value.capitalize()} not found / not pending")
    if item.pledged < item.minimum_goal:
        raise GoalNotReached()

    column = getattr(Preorder, ITEM_COLUMNS[kind])
    preorder_ids = session.exec(
        select(Preorder.preorder_id)
        .where((column == item_id) & (Preorder.status.in_(CAPTURE_PENDING)))
        .order_by(Preorder.preorder_id)
    ).all()
    # Release the item lock; preorders are locked before items everywhere else
    session.commit()

    captured = 0
    failed = []
    for preorder_id in preorder_ids:
        try:
            reason = _capture_preorder(session, gateway, notifier, preorder_id)
        except CaptureSkipped:
            logger.info("Preorder %s is no longer awaiting capture, skipping", preorder_id)
            continue
        if reason is None:
            captured += 1
        else:
            failed.append(CaptureFailure(preorder_id=preorder_id, reason=reason))

    item = _lock_item(session, kind, item_id)
    if captured:
        item.status = ItemStatus.IN_PRODUCTION
        session.add(item)
    session.commit()
    session.refresh(item)

    logger.info(
        "Approval of %s %s: %s captured, %s failed",
        kind.value, item_id, captured, len(failed)
    )
    return CaptureReport(success=captured > 0, captured=captured, failed=failed, status=item.status)


def refund_preorder(
    session: Session,
    gateway: PaymentGateway,
    notifier: NotificationService,
    settings: Settings,
    preorder_id: int
) -> Preorder:
    preorder = _lock_preorder(session, preorder_id)
    payment = _lock_payment(session, preorder.payment_id) if preorder and preorder.payment_id else None
    if not preorder or not payment or not payment.intent_id:
        raise NotFound("Preorder or payment not found")
    if preorder.status == PreorderStatus.REFUNDED:
        raise Conflict("Preorder already refunded")

    gateway.refund(payment.intent_id, payment.amount)

    preorder.status = PreorderStatus.REFUNDED
    payment.status = PaymentStatus.FAILED
    if settings.refund_restores_pledged:
        kind, item_id = preorder_item_ref(preorder)
        item = _lock_item(session, kind, item_id)
        if item:
            item.pledged -= preorder.quantity
            session.add(item)
    session.add(preorder)
    session.add(payment)
    session.commit()
    session.refresh(preorder)
    logger.info("Refunded preorder %s", preorder_id)

    if preorder.user_id:
        notifier.send_preorder_refunded(session, preorder.user_id, preorder_id)
    return preorder


def cancel_preorder(session: Session, user: AuthenticatedUser, preorder_id: int) -> None:
    """Delete the caller's uncaptured preorder and release its pledge atomically."""
    preorder = _lock_preorder(session, preorder_id)
    if not preorder:
        raise NotFound("Preorder not found")
    if preorder.user_id != user.id:
        raise Forbidden("Can only cancel your own preorders")
    if preorder.status not in CANCELABLE:
        raise Conflict("Preorder can no longer be cancelled")
    payment = _lock_payment(session, preorder.payment_id) if preorder.payment_id else None
    if payment and payment.status == PaymentStatus.SUCCEEDED:
        raise AlreadyCaptured()

    kind, item_id = preorder_item_ref(preorder)
    item = _lock_item(session, kind, item_id)
    if item:
        item.pledged -= preorder.quantity
        session.add(item)
    session.delete(preorder)
    session.commit()
    logger.info("User %s cancelled preorder %s", user.id, preorder_id)


def list_user_preorders(session: Session, user_id: int) -> List[Preorder]:
    return session.exec(
        select(Preorder)
        .where(Preorder.user_id == user_id)
        .order_by(Preorder.created_at.desc(), Preorder.preorder_id.desc())
    ).all()
