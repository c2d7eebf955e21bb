import json
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from clauth.auth import create_token
from clauth.config import Settings, get_settings
from clauth.database import get_session
from clauth.errors import UpstreamFailure, ValidationError
from clauth.main import app
from clauth.models.challenge import Challenge
from clauth.models.item import Plushie
from clauth.models.user import User, UserRole
from clauth.services.gateway import get_payment_gateway
from clauth.services.notification import get_notification_service
from clauth.services.phase import utcnow

NEW_YORK = ZoneInfo("America/New_York")

# Noon in New York on the test day
NOON = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """Stands in for Razorpay: payments are authorized unless told otherwise."""

    provider = "razorpay"

    def __init__(self):
        self.orders = {}
        self.statuses = {}
        self.capture_errors = {}
        self.captured = []
        self.refunded = []

    def create_checkout(self, amount, currency, receipt, notes):
        order_id = f"order_{len(self.orders) + 1}"
        self.orders[order_id] = {
            "id": order_id, "amount": amount, "currency": currency,
            "receipt": receipt, "notes": notes,
        }
        return self.orders[order_id]

    def verify_webhook(self, body, signature):
        if signature != "valid-signature":
            raise ValidationError("Invalid webhook signature")
        return json.loads(body)

    def order_notes(self, order_id):
        return self.orders[order_id]["notes"]

    def payment_status(self, intent_id):
        return self.statuses.get(intent_id, "authorized")

    def capture(self, intent_id, amount, currency):
        if intent_id in self.capture_errors:
            raise UpstreamFailure(self.capture_errors[intent_id])
        self.statuses[intent_id] = "captured"
        self.captured.append((intent_id, amount, currency))
        return {"id": intent_id, "status": "captured"}

    def refund(self, intent_id, amount):
        self.refunded.append((intent_id, amount))
        return {"id": f"rfnd_{intent_id}", "amount": amount}


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def send_challenge_winner(self, db, user_id, challenge_theme, challenge_id, rank):
        self.sent.append(("challenge_winner", user_id, rank))
        return []

    def send_preorder_collected(self, db, user_id, preorder_id):
        self.sent.append(("preorder_collected", user_id, preorder_id))
        return []

    def send_preorder_refunded(self, db, user_id, preorder_id):
        self.sent.append(("preorder_refunded", user_id, preorder_id))
        return []


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        challenge_timezone="America/New_York",
        room_capacity=2,
        eligibility_upvotes=3,
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="rzp_test_secret",
        razorpay_webhook_secret="whsec_test",
        checkout_currency="USD",
        preorder_unit_price=5499,
        refund_restores_pledged=False,
        firebase_credentials_json=None,
        maintenance_mode=False,
    )


@pytest.fixture
def clock():
    return Clock(NOON)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def client(session, settings, clock, gateway, notifier):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[utcnow] = clock
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_service] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make_user(username=None, role=UserRole.USER):
        counter["n"] += 1
        user = User(
            username=username or f"user{counter['n']}",
            display_name=f"User {counter['n']}",
            email=f"user{counter['n']}@example.com",
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        token = create_token({"sub": str(user.user_id), "type": "access"})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def make_challenge(session, clock):
    """Challenge for the clock's New York day: opened an hour ago, voting two hours from now."""

    def _make_challenge(start=timedelta(hours=-1), deadline=timedelta(hours=1), end=timedelta(hours=2), day=None):
        now = clock.now
        challenge = Challenge(
            challenge_date=day or now.astimezone(NEW_YORK).date(),
            theme="Cozy autumn",
            main_item="Scarf",
            competition_start=now + start if start is not None else None,
            submission_deadline=now + deadline,
            competition_end=now + end if end is not None else None,
        )
        session.add(challenge)
        session.commit()
        session.refresh(challenge)
        return challenge

    return _make_challenge


@pytest.fixture
def make_item(session):
    def _make_item(model=Plushie, minimum_goal=2, pledged=0, price=2500, creator_id=None):
        item = model(
            name="Sleepy Fox" if model is Plushie else "Knit Hoodie",
            creator_id=creator_id,
            price=price,
            pledged=pledged,
            minimum_goal=minimum_goal,
            goal=minimum_goal * 2,
        )
        session.add(item)
        session.commit()
        session.refresh(item)
        return item

    return _make_item
