from __future__ import annotations

import datetime as dt

import pytest

from reimburseme.core.exceptions import DownstreamFailure
from reimburseme.models.enums import BatchStatus, PlanType, UsageFeature
from reimburseme.services.billing_service import BillingService, StripeGateway, current_reset_day

from factories import create_batch


class FakeGateway:
    def __init__(self):
        self.checkouts = []

    async def ensure_customer(self, db, user):
        return "cus_test"

    def create_batch_export_checkout(self, batch, customer_id, user_id):
        self.checkouts.append((batch.session_id, customer_id, user_id))
        return f"https://checkout.stripe.test/{batch.session_id}"


@pytest.fixture
def gateway(app):
    from reimburseme.api import dependencies

    fake = FakeGateway()
    app.dependency_overrides[dependencies.get_stripe_gateway] = lambda: fake
    return fake


def test_checkout_for_completed_batch_returns_url(client, user, gateway):
    batch = create_batch(user.id, status=BatchStatus.COMPLETED)

    resp = client.post("/billing/export-checkout", json={"batchSessionId": batch.session_id})

    assert resp.status_code == 200
    assert resp.json() == {"url": f"https://checkout.stripe.test/{batch.session_id}"}
    assert gateway.checkouts == [(batch.session_id, "cus_test", user.id)]


def test_checkout_requires_completed_batch(client, user, gateway):
    batch = create_batch(user.id, status=BatchStatus.PROCESSING)

    resp = client.post("/billing/export-checkout", json={"batchSessionId": batch.session_id})

    assert resp.status_code == 404
    assert gateway.checkouts == []


def test_checkout_rejects_already_paid_batch(client, user, gateway):
    batch = create_batch(user.id, status=BatchStatus.COMPLETED, paid_at=dt.datetime.utcnow())

    resp = client.post("/billing/export-checkout", json={"batchSessionId": batch.session_id})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Batch session already paid"}


def test_checkout_requires_batch_session_id(client, gateway):
    resp = client.post("/billing/export-checkout", json={})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation error"


def test_gateway_without_api_key_is_a_downstream_failure(user):
    batch = create_batch(user.id, status=BatchStatus.COMPLETED)
    with pytest.raises(DownstreamFailure):
        StripeGateway(None).create_batch_export_checkout(batch, "cus_test", user.id)


def test_batch_sessions_lists_only_paid_newest_first(client, user):
    now = dt.datetime.utcnow()
    older = create_batch(user.id, status=BatchStatus.COMPLETED, paid_at=now - dt.timedelta(days=2))
    newer = create_batch(user.id, status=BatchStatus.FAILED, paid_at=now)
    create_batch(user.id, status=BatchStatus.COMPLETED)

    resp = client.get("/batch-sessions")

    assert resp.status_code == 200
    ids = [s["sessionId"] for s in resp.json()["batchSessions"]]
    assert ids == [newer.session_id, older.session_id]


def test_current_reset_day_is_first_of_month():
    assert current_reset_day(dt.date(2025, 7, 19)) == dt.date(2025, 7, 1)


def test_limits_matrix():
    svc = BillingService()
    assert svc.limit_for(PlanType.FREE, UsageFeature.RECEIPT_UPLOADS) == 10
    assert svc.limit_for(PlanType.FREE, UsageFeature.REPORT_EXPORTS) == 1
    assert svc.limit_for(PlanType.PRO, UsageFeature.REPORT_EXPORTS) == float("inf")
    assert svc.limit_for(None, UsageFeature.REPORT_EXPORTS) == 1


@pytest.mark.asyncio
async def test_increment_usage_accumulates(async_session_factory, user):
    svc = BillingService()
    async with async_session_factory() as db:
        await svc.increment_usage(db, user.id, UsageFeature.RECEIPT_UPLOADS, 3)
        await svc.increment_usage(db, user.id, UsageFeature.RECEIPT_UPLOADS, 2)
        assert await svc.get_usage(db, user.id, UsageFeature.RECEIPT_UPLOADS) == 5
        assert await svc.get_usage(db, user.id, UsageFeature.REPORT_EXPORTS) == 0
