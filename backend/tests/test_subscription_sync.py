from datetime import timedelta

from seajourney.models.processed_stripe_event import ProcessedStripeEvent
from seajourney.models.subscription_plan_change import SubscriptionPlanChange
from seajourney.routers.webhooks_stripe import process_event
from seajourney.services import subscription_service

from conftest import CREW_PRODUCT, make_user, utcnow


def _event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _catalog(gateway):
    gateway.add_price("price_pro", CREW_PRODUCT, 4990, tier="pro")
    gateway.add_price("price_std", CREW_PRODUCT, 1499, tier="standard")


def test_subscription_update_syncs_tier_and_status(db, gateway):
    _catalog(gateway)
    sub = gateway.add_subscription("sub_1", "price_pro", customer="cus_1")
    user = make_user(db, "crew@example.com", stripe_customer_id="cus_1")

    result = process_event(db, gateway, _event("evt_1", "customer.subscription.updated", sub))

    assert result == {"received": True}
    db.expire_all()
    assert user.subscription_tier == "pro"
    assert user.subscription_status == "active"
    assert user.stripe_subscription_id == "sub_1"
    assert db.query(ProcessedStripeEvent).count() == 1


def test_duplicate_event_is_skipped(db, gateway):
    _catalog(gateway)
    sub = gateway.add_subscription("sub_1", "price_pro", customer="cus_1")
    user = make_user(db, "crew@example.com", stripe_customer_id="cus_1")
    event = _event("evt_1", "customer.subscription.updated", sub)
    process_event(db, gateway, event)

    user.subscription_tier = "free"
    db.commit()
    result = process_event(db, gateway, event)

    assert result["duplicate"] is True
    db.expire_all()
    assert user.subscription_tier == "free"


def test_applied_downgrade_clears_pending_fields(db, gateway):
    _catalog(gateway)
    sub = gateway.add_subscription("sub_1", "price_std", customer="cus_1")
    sub["schedule"] = "sub_sched_1"
    user = make_user(
        db, "crew@example.com",
        stripe_customer_id="cus_1",
        subscription_tier="pro",
        pending_subscription_tier="standard",
        pending_change_effective_at=utcnow(),
    )
    db.add(SubscriptionPlanChange(
        user_id=user.id, stripe_subscription_id="sub_1", old_price_id="price_pro",
        new_price_id="price_std", change_type="downgrade", applied=False,
    ))
    db.commit()

    process_event(db, gateway, _event("evt_2", "customer.subscription.updated", sub))

    db.expire_all()
    assert user.subscription_tier == "standard"
    assert user.pending_subscription_tier is None
    assert user.pending_change_effective_at is None
    assert db.query(SubscriptionPlanChange).one().applied is True


def test_pending_change_survives_while_schedule_is_attached(db, gateway):
    _catalog(gateway)
    sub = gateway.add_subscription("sub_1", "price_pro", customer="cus_1")
    sub["schedule"] = "sub_sched_1"
    user = make_user(
        db, "crew@example.com",
        stripe_customer_id="cus_1",
        pending_subscription_tier="standard",
        pending_change_effective_at=utcnow() + timedelta(days=5),
    )

    process_event(db, gateway, _event("evt_3", "customer.subscription.updated", sub))

    db.expire_all()
    assert user.pending_subscription_tier == "standard"
    assert user.pending_change_effective_at is not None


async def test_same_tier_downgrade_waits_for_price_switch(client, db, gateway):
    gateway.add_price("price_pro_annual", CREW_PRODUCT, 4990, tier="pro")
    gateway.add_price("price_pro_monthly", CREW_PRODUCT, 1499, tier="pro")
    gateway.add_subscription("sub_1", "price_pro_annual", customer="cus_1")
    user = make_user(db, "crew@example.com", stripe_customer_id="cus_1", subscription_tier="pro")

    res = await client.post(
        "/api/billing/change-plan", json={"subscriptionId": "sub_1", "priceId": "price_pro_monthly"}
    )
    assert res.json()["mode"] == "downgrade_scheduled"

    # Stripe sends subscription.updated as soon as the schedule attaches
    process_event(db, gateway, _event("evt_attach", "customer.subscription.updated", gateway.subscriptions["sub_1"]))

    db.expire_all()
    assert user.pending_subscription_tier == "pro"
    assert user.pending_change_effective_at is not None
    assert db.query(SubscriptionPlanChange).one().applied is False

    item = gateway.subscriptions["sub_1"]["items"]["data"][0]
    item["price"] = dict(gateway.prices["price_pro_monthly"])
    process_event(db, gateway, _event("evt_switch", "customer.subscription.updated", gateway.subscriptions["sub_1"]))

    db.expire_all()
    assert user.pending_subscription_tier is None
    assert user.pending_change_effective_at is None
    assert db.query(SubscriptionPlanChange).one().applied is True


def test_deleted_subscription_resets_to_free(db, gateway):
    _catalog(gateway)
    sub = gateway.add_subscription("sub_1", "price_pro", customer="cus_1", status="canceled")
    user = make_user(
        db, "crew@example.com",
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        subscription_tier="pro",
        subscription_status="active",
        pending_subscription_tier="standard",
        pending_change_effective_at=utcnow(),
    )

    process_event(db, gateway, _event("evt_4", "customer.subscription.deleted", sub))

    db.expire_all()
    assert user.subscription_tier == "free"
    assert user.subscription_status == "inactive"
    assert user.stripe_subscription_id is None
    assert user.pending_subscription_tier is None
    assert user.pending_change_effective_at is None


def test_user_resolved_by_customer_email(db, gateway):
    _catalog(gateway)
    sub = gateway.add_subscription("sub_1", "price_pro", customer="cus_new")
    gateway.customers["cus_new"] = {"id": "cus_new", "email": "crew@example.com"}
    user = make_user(db, "crew@example.com")

    process_event(db, gateway, _event("evt_5", "customer.subscription.created", sub))

    db.expire_all()
    assert user.stripe_customer_id == "cus_new"
    assert user.subscription_tier == "pro"


def test_checkout_completed_stamps_user_metadata(db, gateway):
    _catalog(gateway)
    gateway.add_subscription("sub_1", "price_pro", customer="cus_1")
    user = make_user(db, "crew@example.com")
    session = {"id": "cs_1", "client_reference_id": user.id, "subscription": "sub_1", "customer": "cus_1"}

    process_event(db, gateway, _event("evt_6", "checkout.session.completed", session))

    assert gateway.subscriptions["sub_1"]["metadata"]["user_id"] == user.id
    db.expire_all()
    assert user.stripe_customer_id == "cus_1"
    assert user.stripe_subscription_id == "sub_1"


def test_elapsed_pending_change_is_applied(db):
    due = make_user(
        db, "due@example.com",
        stripe_subscription_id="sub_due",
        subscription_tier="pro",
        pending_subscription_tier="standard",
        pending_change_effective_at=utcnow() - timedelta(hours=1),
    )
    later = make_user(
        db, "later@example.com",
        subscription_tier="pro",
        pending_subscription_tier="standard",
        pending_change_effective_at=utcnow() + timedelta(days=3),
    )

    assert subscription_service.apply_elapsed_pending_changes(db, utcnow()) == 1

    db.expire_all()
    assert due.subscription_tier == "standard"
    assert due.pending_subscription_tier is None
    assert due.pending_change_effective_at is None
    assert later.pending_subscription_tier == "standard"


async def test_cancel_releases_schedule_first(client, db, gateway):
    _catalog(gateway)
    gateway.add_subscription("sub_1", "price_pro", customer="cus_1")
    gateway.create_schedule_from_subscription("sub_1")
    user = make_user(
        db, "crew@example.com",
        stripe_subscription_id="sub_1",
        pending_subscription_tier="standard",
        pending_change_effective_at=utcnow(),
    )

    res = await client.post("/api/billing/cancel", json={"subscriptionId": "sub_1"})

    assert res.status_code == 200
    assert res.json() == {"success": True, "status": "canceled", "cancelAtPeriodEnd": False}
    names = gateway.call_names()
    assert names.index("release_schedule") < names.index("cancel_subscription")
    db.expire_all()
    assert user.pending_subscription_tier is None


async def test_resume(client, gateway):
    _catalog(gateway)
    gateway.add_subscription("sub_1", "price_pro")

    res = await client.post("/api/billing/resume", json={"subscriptionId": "sub_1"})

    assert res.status_code == 200
    assert gateway.subscriptions["sub_1"]["cancel_at_period_end"] is False


async def test_webhook_rejects_bad_signature(client):
    res = await client.post(
        "/api/webhooks/stripe",
        content=b'{"id": "evt_x"}',
        headers={"stripe-signature": "t=1,v1=bad"},
    )

    assert res.status_code == 400
