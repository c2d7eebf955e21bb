import pytest
from sqlalchemy import update
from sqlmodel import select

from clauth.auth import AuthenticatedUser
from clauth.errors import AlreadyCaptured, Conflict, Forbidden, GoalNotReached, NotFound, ValidationError
from clauth.models.item import ClothingItem, ItemKind, ItemStatus, Plushie
from clauth.models.payment import PaymentIntent, PaymentStatus
from clauth.models.preorder import Preorder, PreorderStatus
from clauth.models.user import UserRole
from clauth.services.payments import (
    CheckoutRequest, WebhookOutcome, approve_item, cancel_preorder, handle_gateway_event,
    list_user_preorders, record_authorized_payment, refund_preorder, start_checkout,
)


def authorized_event(payment_id, item, quantity=1, user=None, guest_email="", amount=2500, notes=True):
    payment = {
        "id": payment_id,
        "entity": "payment",
        "order_id": f"order_for_{payment_id}",
        "amount": amount,
        "currency": "USD",
        "status": "authorized",
        "email": "buyer@example.com",
        "contact": "+15555550100",
        "notes": {},
    }
    if notes:
        payment["notes"] = {
            "item_type": "plushie" if isinstance(item, Plushie) else "clothing",
            "item_id": str(item.plushie_id if isinstance(item, Plushie) else item.clothing_item_id),
            "quantity": str(quantity),
            "size": "" if isinstance(item, Plushie) else "M",
            "user_id": str(user.user_id) if user else "",
            "guest_email": guest_email,
        }
    return {"event": "payment.authorized", "payload": {"payment": {"entity": payment}}}


def as_caller(user):
    return AuthenticatedUser(id=user.user_id, role=UserRole.USER)


@pytest.fixture
def pledge(session, gateway):
    def _pledge(payment_id, item, **kwargs):
        outcome = handle_gateway_event(session, gateway, authorized_event(payment_id, item, **kwargs))
        assert outcome == WebhookOutcome.RECORDED
        return session.exec(
            select(Preorder).join(PaymentIntent).where(PaymentIntent.intent_id == payment_id)
        ).one()

    return _pledge


class TestCheckout:
    def test_guest_checkout_embeds_metadata(self, session, gateway, settings, make_item):
        item = make_item(price=2500)

        checkout = start_checkout(
            session, gateway, settings,
            CheckoutRequest(plushie_id=item.plushie_id, quantity=2, guest_email="guest@example.com"),
            None,
        )

        assert checkout.session_id == "order_1"
        assert checkout.amount == 5000
        assert checkout.key_id == "rzp_test_key"
        notes = gateway.orders["order_1"]["notes"]
        assert notes["item_type"] == "plushie"
        assert notes["quantity"] == "2"
        assert notes["guest_email"] == "guest@example.com"
        assert notes["user_id"] == ""
        assert session.exec(select(Preorder)).all() == []

    def test_signed_in_checkout_uses_user_id(self, session, gateway, settings, make_user, make_item):
        item = make_item(model=ClothingItem, price=None)
        user = make_user()

        checkout = start_checkout(
            session, gateway, settings,
            CheckoutRequest(clothing_item_id=item.clothing_item_id, size="M"),
            as_caller(user),
        )

        assert checkout.amount == settings.preorder_unit_price
        assert gateway.orders[checkout.session_id]["notes"]["user_id"] == str(user.user_id)

    @pytest.mark.parametrize("request_kwargs", [
        {},
        {"plushie_id": 1, "clothing_item_id": 1, "guest_email": "g@example.com"},
        {"plushie_id": 1},
    ])
    def test_rejects_malformed_requests(self, session, gateway, settings, make_item, request_kwargs):
        make_item()
        with pytest.raises(ValidationError):
            start_checkout(session, gateway, settings, CheckoutRequest(**request_kwargs), None)
        assert gateway.orders == {}

    def test_clothing_needs_a_size(self, session, gateway, settings, make_user, make_item):
        item = make_item(model=ClothingItem)
        with pytest.raises(ValidationError, match="Size"):
            start_checkout(
                session, gateway, settings,
                CheckoutRequest(clothing_item_id=item.clothing_item_id), as_caller(make_user()),
            )

    def test_unknown_or_closed_item(self, session, gateway, settings, make_user, make_item):
        caller = as_caller(make_user())
        with pytest.raises(NotFound):
            start_checkout(session, gateway, settings, CheckoutRequest(plushie_id=404), caller)

        item = make_item()
        item.status = ItemStatus.IN_PRODUCTION
        session.add(item)
        session.commit()
        with pytest.raises(Conflict):
            start_checkout(session, gateway, settings, CheckoutRequest(plushie_id=item.plushie_id), caller)


class TestWebhook:
    def test_authorized_payment_creates_confirmed_preorder(self, session, gateway, make_user, make_item):
        item = make_item()
        user = make_user()

        outcome = handle_gateway_event(session, gateway, authorized_event("pay_1", item, quantity=3, user=user))

        assert outcome == WebhookOutcome.RECORDED
        intent = session.exec(select(PaymentIntent)).one()
        assert intent.intent_id == "pay_1"
        assert intent.status == PaymentStatus.REQUIRES_CAPTURE
        preorder = session.exec(select(Preorder)).one()
        assert preorder.status == PreorderStatus.CONFIRMED
        assert preorder.user_id == user.user_id
        assert preorder.guest_email is None
        assert preorder.quantity == 3
        assert preorder.payment_id == intent.payment_id
        session.refresh(item)
        assert item.pledged == 3

    def test_redelivery_writes_nothing(self, session, gateway, make_item):
        item = make_item()
        event = authorized_event("pay_1", item, quantity=2, guest_email="guest@example.com")

        assert handle_gateway_event(session, gateway, event) == WebhookOutcome.RECORDED
        assert handle_gateway_event(session, gateway, event) == WebhookOutcome.DUPLICATE

        assert len(session.exec(select(PaymentIntent)).all()) == 1
        assert len(session.exec(select(Preorder)).all()) == 1
        session.refresh(item)
        assert item.pledged == 2

    def test_notes_fall_back_to_the_order(self, session, gateway, make_item):
        item = make_item()
        gateway.orders["order_for_pay_9"] = {
            "notes": {"item_type": "plushie", "item_id": str(item.plushie_id), "quantity": "1",
                      "guest_email": "guest@example.com"},
        }

        outcome = handle_gateway_event(session, gateway, authorized_event("pay_9", item, notes=False))

        assert outcome == WebhookOutcome.RECORDED
        assert session.exec(select(Preorder)).one().guest_email == "guest@example.com"

    def test_other_events_are_ignored(self, session, gateway):
        assert handle_gateway_event(session, gateway, {"event": "payment.captured"}) == WebhookOutcome.IGNORED
        assert session.exec(select(PaymentIntent)).all() == []

    @pytest.mark.parametrize("event", [
        ["payment.authorized"],
        "payment.authorized",
        {"event": "payment.authorized", "payload": {"payment": ["pay_1"]}},
        {"event": "payment.authorized", "payload": "pay_1"},
    ])
    def test_malformed_events_fail_without_raising(self, session, gateway, event):
        assert handle_gateway_event(session, gateway, event) == WebhookOutcome.FAILED
        assert session.exec(select(PaymentIntent)).all() == []

    def test_internal_failure_is_reported_not_raised(self, session, gateway, make_item):
        item = make_item()
        event = authorized_event("pay_1", item)
        event["payload"]["payment"]["entity"]["notes"]["item_id"] = "999"

        assert handle_gateway_event(session, gateway, event) == WebhookOutcome.FAILED
        assert session.exec(select(PaymentIntent)).all() == []

    def test_missing_item_raises_when_called_directly(self, session, gateway, make_item):
        item = make_item()
        payment = authorized_event("pay_1", item)["payload"]["payment"]["entity"]
        payment["notes"]["item_id"] = "999"

        with pytest.raises(NotFound):
            record_authorized_payment(session, gateway, payment)


class TestApproval:
    def test_goal_must_be_reached(self, session, gateway, notifier, make_item, pledge):
        item = make_item(minimum_goal=2)
        pledge("pay_1", item)

        with pytest.raises(GoalNotReached) as exc:
            approve_item(session, gateway, notifier, ItemKind.PLUSHIE, item.plushie_id)
        assert exc.value.status_code == 409
        assert gateway.captured == []

    def test_only_pending_items(self, session, gateway, notifier, make_item):
        item = make_item(minimum_goal=0)
        item.status = ItemStatus.CANCELED
        session.add(item)
        session.commit()

        with pytest.raises(NotFound):
            approve_item(session, gateway, notifier, ItemKind.PLUSHIE, item.plushie_id)

    def test_partial_failure_still_promotes_item(self, session, gateway, notifier, make_user, make_item, pledge):
        item = make_item(minimum_goal=2)
        buyer = make_user()
        ok_1 = pledge("pay_ok_1", item, user=buyer)
        ok_2 = pledge("pay_ok_2", item, guest_email="guest@example.com")
        settled = pledge("pay_settled", item)
        broken = pledge("pay_broken", item)
        gateway.statuses["pay_settled"] = "captured"
        gateway.capture_errors["pay_broken"] = "card declined"

        report = approve_item(session, gateway, notifier, ItemKind.PLUSHIE, item.plushie_id)

        assert report.success is True
        assert report.captured == 2
        assert {f.preorder_id: f.reason for f in report.failed} == {
            settled.preorder_id: "Payment is already captured",
            broken.preorder_id: "card declined",
        }
        assert report.status == ItemStatus.IN_PRODUCTION

        session.expire_all()
        for preorder in (ok_1, ok_2):
            assert session.get(Preorder, preorder.preorder_id).status == PreorderStatus.COLLECTED
        failed = session.get(Preorder, broken.preorder_id)
        assert failed.status == PreorderStatus.CONFIRMED
        failed_payment = session.get(PaymentIntent, failed.payment_id)
        assert failed_payment.status == PaymentStatus.FAILED
        assert failed_payment.failure_reason == "card declined"
        assert session.get(Preorder, settled.preorder_id).status == PreorderStatus.CONFIRMED
        assert session.get(Plushie, item.plushie_id).status == ItemStatus.IN_PRODUCTION
        assert notifier.sent == [("preorder_collected", buyer.user_id, ok_1.preorder_id)]

    def test_all_failures_leave_item_pending(self, session, gateway, notifier, make_item, pledge):
        item = make_item(minimum_goal=1)
        preorder = pledge("pay_1", item)
        gateway.capture_errors["pay_1"] = "gateway timeout"

        report = approve_item(session, gateway, notifier, ItemKind.PLUSHIE, item.plushie_id)

        assert report.success is False
        assert report.captured == 0
        assert [f.preorder_id for f in report.failed] == [preorder.preorder_id]
        assert report.status == ItemStatus.PENDING

    def test_preorders_collected_meanwhile_are_skipped(self, session, gateway, notifier, make_item, pledge):
        item = make_item(minimum_goal=2)
        pledge("pay_1", item)
        other = pledge("pay_2", item)
        other_id, other_payment_id = other.preorder_id, other.payment_id
        capture = gateway.capture

        def capture_while_another_approval_runs(intent_id, amount, currency):
            result = capture(intent_id, amount, currency)
            if intent_id == "pay_1":
                session.connection().execute(
                    update(Preorder)
                    .where(Preorder.preorder_id == other_id)
                    .values(status=PreorderStatus.COLLECTED)
                )
            return result

        gateway.capture = capture_while_another_approval_runs

        report = approve_item(session, gateway, notifier, ItemKind.PLUSHIE, item.plushie_id)

        assert report.captured == 1
        assert report.failed == []
        assert gateway.captured == [("pay_1", 2500, "USD")]
        session.expire_all()
        assert session.get(PaymentIntent, other_payment_id).status == PaymentStatus.REQUIRES_CAPTURE

    def test_clothing_approval(self, session, gateway, notifier, make_item, pledge):
        item = make_item(model=ClothingItem, minimum_goal=1)
        pledge("pay_1", item)

        report = approve_item(session, gateway, notifier, ItemKind.CLOTHING, item.clothing_item_id)

        assert report.captured == 1
        assert gateway.captured == [("pay_1", 2500, "USD")]


class TestRefundAndCancel:
    def test_refund_keeps_pledged_by_default(self, session, gateway, notifier, settings, make_user, make_item, pledge):
        item = make_item()
        buyer = make_user()
        preorder = pledge("pay_1", item, quantity=2, user=buyer)

        refunded = refund_preorder(session, gateway, notifier, settings, preorder.preorder_id)

        assert refunded.status == PreorderStatus.REFUNDED
        assert session.get(PaymentIntent, refunded.payment_id).status == PaymentStatus.FAILED
        assert gateway.refunded == [("pay_1", 2500)]
        session.refresh(item)
        assert item.pledged == 2
        assert notifier.sent == [("preorder_refunded", buyer.user_id, preorder.preorder_id)]

        with pytest.raises(Conflict):
            refund_preorder(session, gateway, notifier, settings, preorder.preorder_id)

    def test_refund_can_restore_pledged(self, session, gateway, notifier, settings, make_item, pledge):
        item = make_item()
        preorder = pledge("pay_1", item, quantity=2)
        restoring = settings.model_copy(update={"refund_restores_pledged": True})

        refund_preorder(session, gateway, notifier, restoring, preorder.preorder_id)

        session.refresh(item)
        assert item.pledged == 0

    def test_refund_unknown_preorder(self, session, gateway, notifier, settings):
        with pytest.raises(NotFound):
            refund_preorder(session, gateway, notifier, settings, 404)

    def test_cancel_is_the_exact_inverse_of_the_pledge(self, session, make_user, make_item, pledge):
        item = make_item(pledged=5)
        buyer = make_user()
        preorder = pledge("pay_1", item, quantity=3, user=buyer)
        session.refresh(item)
        assert item.pledged == 8

        cancel_preorder(session, as_caller(buyer), preorder.preorder_id)

        session.refresh(item)
        assert item.pledged == 5
        assert session.exec(select(Preorder)).all() == []
        assert list_user_preorders(session, buyer.user_id) == []

    def test_only_the_owner_can_cancel(self, session, make_user, make_item, pledge):
        item = make_item()
        preorder = pledge("pay_1", item, user=make_user())

        with pytest.raises(Forbidden):
            cancel_preorder(session, as_caller(make_user()), preorder.preorder_id)
        session.refresh(item)
        assert item.pledged == 1

    def test_collected_preorders_cannot_be_cancelled(self, session, gateway, notifier, make_user, make_item, pledge):
        item = make_item(minimum_goal=1)
        buyer = make_user()
        preorder = pledge("pay_1", item, user=buyer)
        approve_item(session, gateway, notifier, ItemKind.PLUSHIE, item.plushie_id)

        with pytest.raises(Conflict):
            cancel_preorder(session, as_caller(buyer), preorder.preorder_id)

    def test_captured_payment_blocks_cancel(self, session, make_user, make_item, pledge):
        item = make_item()
        buyer = make_user()
        preorder = pledge("pay_1", item, user=buyer)
        payment = session.get(PaymentIntent, preorder.payment_id)
        payment.status = PaymentStatus.SUCCEEDED
        session.add(payment)
        session.commit()

        with pytest.raises(AlreadyCaptured):
            cancel_preorder(session, as_caller(buyer), preorder.preorder_id)

    def test_cancel_rechecks_status_once_locked(self, session, make_user, make_item, pledge):
        item = make_item()
        buyer = make_user()
        preorder = pledge("pay_1", item, user=buyer)
        preorder_id = preorder.preorder_id
        assert preorder.status == PreorderStatus.CONFIRMED
        # An approval collects it after this copy was loaded
        session.connection().execute(
            update(Preorder)
            .where(Preorder.preorder_id == preorder_id)
            .values(status=PreorderStatus.COLLECTED)
        )

        with pytest.raises(Conflict):
            cancel_preorder(session, as_caller(buyer), preorder_id)
        session.refresh(item)
        assert item.pledged == 1
        assert session.get(Preorder, preorder_id) is not None
