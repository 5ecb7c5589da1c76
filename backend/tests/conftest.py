"""
Pytest configuration: in-memory SQLite, fake Stripe gateway, captured emails
"""
import copy
import os
import time
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "test")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from seajourney.core.config import settings
from seajourney.core.database import Base, get_db
from seajourney.core.rate_limit import limiter
from seajourney.main import app
from seajourney.models import (
    User, Vessel, Testimonial, VesselClaimRequest,
)
from seajourney.routers.deps import get_stripe_gateway
from seajourney.services import mail_service

CREW_PRODUCT = "prod_crew"
VESSEL_PRODUCT = "prod_vessel"

settings.STRIPE_CREW_PRODUCT_ID = CREW_PRODUCT
settings.STRIPE_VESSEL_PRODUCT_ID = VESSEL_PRODUCT

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeStripeGateway:
    """In-memory stand-in for StripeGateway that rewrites schedule phases like Stripe does."""

    def __init__(self):
        self.prices: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}
        self.schedules: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.calls: list[tuple[str, tuple, dict]] = []
        self.failures: dict[str, Exception] = {}

    def _call(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def mutating_calls(self) -> list[str]:
        return [n for n in self.call_names() if not n.startswith("retrieve_")]

    # --- fixtures ---

    def add_price(self, price_id, product_id, unit_amount, tier=None, nickname=None):
        self.prices[price_id] = {
            "id": price_id,
            "object": "price",
            "unit_amount": unit_amount,
            "nickname": nickname,
            "metadata": {"tier": tier} if tier else {},
            "product": {"id": product_id, "metadata": {}},
        }
        return self.prices[price_id]

    def add_subscription(self, subscription_id, price_id, customer="cus_test", status="active", metadata=None):
        now = int(time.time())
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "object": "subscription",
            "status": status,
            "customer": customer,
            "schedule": None,
            "metadata": metadata or {},
            "current_period_start": now - 10 * 86400,
            "current_period_end": now + 20 * 86400,
            "items": {"data": [{
                "id": f"si_{subscription_id}",
                "quantity": 1,
                "price": copy.deepcopy(self.prices[price_id]),
            }]},
        }
        return self.subscriptions[subscription_id]

    # --- reads ---

    def retrieve_subscription(self, subscription_id):
        self._call("retrieve_subscription", subscription_id)
        return copy.deepcopy(self.subscriptions[subscription_id])

    def retrieve_price(self, price_id):
        self._call("retrieve_price", price_id)
        return copy.deepcopy(self.prices[price_id])

    def retrieve_customer(self, customer_id):
        self._call("retrieve_customer", customer_id)
        return copy.deepcopy(self.customers.get(customer_id, {"id": customer_id}))

    def retrieve_schedule(self, schedule_id):
        self._call("retrieve_schedule", schedule_id)
        return copy.deepcopy(self.schedules[schedule_id])

    # --- writes ---

    def create_schedule_from_subscription(self, subscription_id):
        self._call("create_schedule_from_subscription", subscription_id)
        sub = self.subscriptions[subscription_id]
        item = sub["items"]["data"][0]
        schedule_id = f"sub_sched_{len(self.schedules) + 1}"
        self.schedules[schedule_id] = {
            "id": schedule_id,
            "status": "active",
            "subscription": subscription_id,
            "end_behavior": "release",
            "phases": [{
                "start_date": sub["current_period_start"],
                "end_date": sub["current_period_end"],
                "items": [{"price": item["price"]["id"], "quantity": item["quantity"]}],
            }],
        }
        sub["schedule"] = schedule_id
        return copy.deepcopy(self.schedules[schedule_id])

    def update_schedule(self, schedule_id, phases, end_behavior="release"):
        self._call("update_schedule", schedule_id, phases=phases, end_behavior=end_behavior)
        schedule = self.schedules[schedule_id]
        schedule["phases"] = copy.deepcopy(phases)
        schedule["end_behavior"] = end_behavior
        return copy.deepcopy(schedule)

    def release_schedule(self, schedule_id):
        self._call("release_schedule", schedule_id)
        schedule = self.schedules[schedule_id]
        schedule["status"] = "released"
        sub = self.subscriptions.get(schedule["subscription"])
        if sub:
            sub["schedule"] = None
        return copy.deepcopy(schedule)

    def update_subscription_item(self, subscription_id, item_id, price_id):
        self._call("update_subscription_item", subscription_id, item_id, price_id)
        sub = self.subscriptions[subscription_id]
        for item in sub["items"]["data"]:
            if item["id"] == item_id:
                item["price"] = copy.deepcopy(self.prices[price_id])
        result = copy.deepcopy(sub)
        result["latest_invoice"] = {
            "id": "in_test",
            "status": "paid",
            "payment_intent": {"id": "pi_test", "status": "succeeded", "client_secret": "pi_test_secret"},
        }
        return result

    def cancel_subscription(self, subscription_id, at_period_end=False):
        self._call("cancel_subscription", subscription_id, at_period_end=at_period_end)
        sub = self.subscriptions[subscription_id]
        if at_period_end:
            sub["cancel_at_period_end"] = True
        else:
            sub["status"] = "canceled"
        return copy.deepcopy(sub)

    def resume_subscription(self, subscription_id):
        self._call("resume_subscription", subscription_id)
        sub = self.subscriptions[subscription_id]
        sub["cancel_at_period_end"] = False
        return copy.deepcopy(sub)

    def set_subscription_metadata(self, subscription_id, metadata):
        self._call("set_subscription_metadata", subscription_id, metadata=metadata)
        self.subscriptions[subscription_id]["metadata"] = dict(metadata)
        return copy.deepcopy(self.subscriptions[subscription_id])


class RecordingSleep:
    """Sleep stand-in that records delays and can run a hook on each call."""

    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float):
        self.delays.append(seconds)
        if self.on_sleep:
            self.on_sleep(len(self.delays))


# =========================================================
# fixtures
# =========================================================

@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> list[dict]:
    """Capture outgoing emails instead of calling Resend."""
    sent = []

    def _fake_send(to_email, subject, template_name, **context):
        sent.append({"to": to_email, "subject": subject, "template": template_name, **context})
        return True

    monkeypatch.setattr(mail_service, "_send", _fake_send)
    return sent


@pytest.fixture(autouse=True)
def _disable_rate_limit():
    limiter.enabled = False
    limiter.reset()
    yield
    limiter.enabled = True
    limiter.reset()


@pytest_asyncio.fixture
async def client(db, gateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
            yield async_client
    finally:
        app.dependency_overrides.clear()


# =========================================================
# factories
# =========================================================

def make_user(db, email, role="crew", position=None, first_name=None, last_name=None, **kwargs) -> User:
    user = User(
        email=email,
        role=role,
        position=position,
        first_name=first_name,
        last_name=last_name,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_vessel(db, name="MY Aurora", imo="9876543") -> Vessel:
    vessel = Vessel(name=name, imo=imo)
    db.add(vessel)
    db.commit()
    db.refresh(vessel)
    return vessel


def make_testimonial(db, crew: User, vessel: Vessel, **overrides) -> Testimonial:
    values = dict(
        user_id=crew.id,
        vessel_id=vessel.id if vessel else None,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 3, 31),
        total_days=90,
        at_sea_days=60,
        standby_days=20,
        yard_days=5,
        leave_days=5,
        status="pending_captain",
        signoff_token="tok_abc123",
        signoff_target_email="captain@example.com",
        signoff_token_expires_at=utcnow() + timedelta(days=7),
    )
    values.update(overrides)
    testimonial = Testimonial(**values)
    db.add(testimonial)
    db.commit()
    db.refresh(testimonial)
    return testimonial


def make_claim(db, vessel: Vessel, requester: User, **overrides) -> VesselClaimRequest:
    values = dict(vessel_id=vessel.id, requested_by=requester.id, status="pending")
    values.update(overrides)
    claim = VesselClaimRequest(**values)
    db.add(claim)
    db.commit()
    db.refresh(claim)
    return claim


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
