import asyncio
import re
import threading

import pytest

from seajourney.core.errors import BadRequestError, NotFoundError
from seajourney.core.retry import RetryPolicy
from seajourney.models.approved_testimonial import ApprovedTestimonial
from seajourney.models.testimonial import Testimonial
from seajourney.services import testimonial_service

from conftest import RecordingSleep, make_testimonial, make_user, make_vessel


def _approved(db, **overrides):
    crew = make_user(db, "crew@example.com", first_name="Ana", last_name="Silva")
    vessel = make_vessel(db)
    values = dict(status="approved", captain_position="Master", captain_name="John Smith")
    values.update(overrides)
    return make_testimonial(db, crew, vessel, **values)


def _assign_code_out_of_band(db, testimonial_id, code):
    db.query(Testimonial).filter(Testimonial.id == testimonial_id).update(
        {"testimonial_code": code}, synchronize_session=False
    )
    db.commit()


def test_snapshot_waits_for_code_with_linear_backoff(db):
    testimonial = _approved(db)
    sleep = RecordingSleep(
        on_sleep=lambda n: _assign_code_out_of_band(db, testimonial.id, "SJ-AB12-CD34") if n == 3 else None
    )
    policy = RetryPolicy(max_attempts=10, base_delay=0.2, sleep=sleep)

    snapshot, created = testimonial_service.create_snapshot(db, testimonial.id, policy=policy)

    assert created is True
    assert snapshot.testimonial_code == "SJ-AB12-CD34"
    assert sleep.delays == pytest.approx([0.2, 0.4, 0.6])


def test_snapshot_proceeds_without_code_after_max_attempts(db):
    testimonial = _approved(db)
    sleep = RecordingSleep()
    policy = RetryPolicy(max_attempts=4, base_delay=0.2, sleep=sleep)

    snapshot, created = testimonial_service.create_snapshot(db, testimonial.id, policy=policy)

    assert created is True
    assert snapshot.testimonial_code is None
    assert len(sleep.delays) == 3


def test_snapshot_field_defaults(db):
    crew = make_user(db, "crew@example.com")
    testimonial = make_testimonial(
        db, crew, None, status="approved", testimonial_code="SJ-0000-0001", captain_name=None,
    )

    snapshot, _ = testimonial_service.create_snapshot(db, testimonial.id, policy=RetryPolicy(max_attempts=1))

    assert snapshot.crew_name == "Unknown"
    assert snapshot.rank == "Unknown"
    assert snapshot.vessel_name == "Unknown"
    assert snapshot.imo is None
    assert snapshot.captain_name == "Unknown"
    assert snapshot.captain_license is None
    assert snapshot.standby_days == 20


def test_existing_snapshot_is_returned_unchanged(db):
    testimonial = _approved(db, testimonial_code="SJ-AAAA-BBBB")
    first, created = testimonial_service.create_snapshot(db, testimonial.id)
    db.query(Testimonial).filter(Testimonial.id == testimonial.id).update(
        {"captain_name": "Someone Else"}, synchronize_session=False
    )
    db.commit()

    second, created_again = testimonial_service.create_snapshot(db, testimonial.id)

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert second.captain_name == "John Smith"
    assert db.query(ApprovedTestimonial).count() == 1


def test_not_approved_testimonial_is_rejected(db):
    testimonial = _approved(db, status="pending_captain")
    sleep = RecordingSleep()

    with pytest.raises(BadRequestError) as exc:
        testimonial_service.create_snapshot(
            db, testimonial.id, policy=RetryPolicy(max_attempts=3, base_delay=0.2, sleep=sleep)
        )

    assert exc.value.extra == {
        "testimonialId": testimonial.id,
        "initialStatus": "pending_captain",
        "finalStatus": "pending_captain",
    }
    assert len(sleep.delays) == 2
    assert db.query(ApprovedTestimonial).count() == 0


def test_unknown_and_missing_testimonial(db):
    with pytest.raises(BadRequestError):
        testimonial_service.create_snapshot(db, None)
    with pytest.raises(NotFoundError):
        testimonial_service.create_snapshot(db, "does-not-exist")


async def test_create_snapshot_endpoint(client, db):
    testimonial = _approved(db, testimonial_code="SJ-ZZZZ-0001")

    res = await client.post("/api/testimonials/create-snapshot", json={"testimonialId": testimonial.id})

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["snapshot"]["testimonial_code"] == "SJ-ZZZZ-0001"
    assert body["snapshot"]["captain_license"] == "Master"


async def test_create_snapshot_endpoint_missing_id(client):
    res = await client.post("/api/testimonials/create-snapshot", json={})

    assert res.status_code == 400


def test_code_assignment_fills_null_snapshot_code_once(db):
    testimonial = _approved(db)
    snapshot, _ = testimonial_service.create_snapshot(db, testimonial.id, policy=RetryPolicy(max_attempts=1))
    assert snapshot.testimonial_code is None

    assigned = testimonial_service.assign_testimonial_codes(db)

    assert assigned == 1
    db.expire_all()
    assert re.fullmatch(r"SJ-[0-9A-Z]{4}-[0-9A-Z]{4}", testimonial.testimonial_code)
    assert snapshot.testimonial_code == testimonial.testimonial_code
    assert testimonial_service.assign_testimonial_codes(db) == 0


def test_code_assignment_retries_on_collision(db, monkeypatch):
    crew = make_user(db, "crew@example.com")
    make_testimonial(db, crew, None, status="approved", testimonial_code="SJ-DUPE-0001", signoff_token="tok_1")
    pending = make_testimonial(db, crew, None, status="approved", signoff_token="tok_2")
    codes = iter(["SJ-DUPE-0001", "SJ-FRSH-0002"])
    monkeypatch.setattr(testimonial_service, "generate_testimonial_code", lambda: next(codes))

    assert testimonial_service.assign_testimonial_codes(db) == 1

    db.expire_all()
    assert pending.testimonial_code == "SJ-FRSH-0002"


def test_backfill_creates_missing_snapshots(db):
    crew = make_user(db, "crew@example.com")
    make_testimonial(db, crew, None, status="approved", signoff_token="tok_1")
    make_testimonial(db, crew, None, status="rejected", signoff_token="tok_2")

    assert testimonial_service.backfill_missing_snapshots(db) == 1
    assert testimonial_service.backfill_missing_snapshots(db) == 0
    assert db.query(ApprovedTestimonial).count() == 1


def test_concurrent_snapshot_insert_returns_existing(db, monkeypatch):
    testimonial = _approved(db, testimonial_code="SJ-RACE-0001")
    winner, _ = testimonial_service.create_snapshot(db, testimonial.id)
    existing_snapshot = testimonial_service._existing_snapshot
    lookups = []

    def _missed_first_lookup(db, testimonial_id):
        # the competing insert commits after our existence check
        lookups.append(testimonial_id)
        return None if len(lookups) == 1 else existing_snapshot(db, testimonial_id)

    monkeypatch.setattr(testimonial_service, "_existing_snapshot", _missed_first_lookup)

    snapshot, created = testimonial_service.create_snapshot(db, testimonial.id)

    assert created is False
    assert snapshot.id == winner.id
    assert len(lookups) == 2
    assert db.query(ApprovedTestimonial).count() == 1


async def test_snapshot_poll_does_not_block_other_requests(client, db, monkeypatch):
    testimonial = _approved(db)
    polling = threading.Event()
    released = threading.Event()
    waits = []

    def _sleep(seconds):
        polling.set()
        waits.append(released.wait(5))

    monkeypatch.setattr(
        testimonial_service, "default_snapshot_policy",
        lambda: RetryPolicy(max_attempts=2, base_delay=0.2, sleep=_sleep),
    )

    snapshot_call = asyncio.create_task(
        client.post("/api/testimonials/create-snapshot", json={"testimonialId": testimonial.id})
    )
    await asyncio.to_thread(polling.wait, 5)
    health = await client.get("/health")
    released.set()
    res = await snapshot_call

    assert health.status_code == 200
    # the poll was still sleeping when /health answered
    assert waits == [True]
    assert res.status_code == 200
    assert res.json()["created"] is True
