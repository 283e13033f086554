"""
Tests for POST /api/billing/webhook: signature gate and response policy.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_reconciler
from app.core.config import settings
from app.main import app as fastapi_app
from app.models.billing import SubscriptionRecord, UserAccount
from app.services.plan_catalog import PlanCatalog
from app.services.reconciler import FAILED, AccountReconciler, ReconcileResult, SubscriptionDetails
from conftest import sign_payload, stripe_event

CHECKOUT = {
    "id": "cs_1",
    "object": "checkout.session",
    "customer": "c1",
    "subscription": "s1",
    "metadata": {"userId": "u1"},
}


def _post(client, body, header=None):
    headers = {"Content-Type": "application/json"}
    if header is not None:
        headers["Stripe-Signature"] = header
    return client.post("/api/billing/webhook", content=body, headers=headers)


@pytest.fixture
def mock_reconciler():
    rec = MagicMock()
    rec.apply.return_value = ReconcileResult("applied", "checkout_completed")
    fastapi_app.dependency_overrides[get_reconciler] = lambda: rec
    yield rec
    fastapi_app.dependency_overrides.pop(get_reconciler, None)


class TestSignatureGate:
    def test_tampered_body_rejected_before_reconcile(self, anon_client, mock_reconciler):
        body = stripe_event("checkout.session.completed", CHECKOUT)
        header = sign_payload(body)
        response = _post(anon_client, body.replace(b'"c1"', b'"c2"'), header)
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_signature"
        assert mock_reconciler.apply.call_count == 0

    def test_missing_header_rejected(self, anon_client, mock_reconciler):
        body = stripe_event("checkout.session.completed", CHECKOUT)
        response = _post(anon_client, body)
        assert response.status_code == 400
        assert mock_reconciler.apply.call_count == 0

    def test_valid_signature_reconciles_once(self, anon_client, mock_reconciler):
        body = stripe_event("checkout.session.completed", CHECKOUT)
        response = _post(anon_client, body, sign_payload(body))
        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "applied"}
        assert mock_reconciler.apply.call_count == 1
        event = mock_reconciler.apply.call_args.args[0]
        assert event.account_id == "u1"


class TestResponsePolicy:
    def test_failure_still_returns_200_by_default(self, anon_client, mock_reconciler):
        mock_reconciler.apply.return_value = ReconcileResult(FAILED, "payment_failed", "db down", retryable=True)
        body = stripe_event("invoice.payment_failed", {"customer": "c1"})
        response = _post(anon_client, body, sign_payload(body))
        assert response.status_code == 200
        assert response.json()["outcome"] == "failed"

    def test_transient_failure_returns_503_when_enabled(self, anon_client, mock_reconciler, monkeypatch):
        monkeypatch.setattr(settings, "webhook_retry_transient_failures", True)
        mock_reconciler.apply.return_value = ReconcileResult(FAILED, "payment_failed", "db down", retryable=True)
        body = stripe_event("invoice.payment_failed", {"customer": "c1"})
        response = _post(anon_client, body, sign_payload(body))
        assert response.status_code == 503

    def test_permanent_failure_returns_200_when_enabled(self, anon_client, mock_reconciler, monkeypatch):
        monkeypatch.setattr(settings, "webhook_retry_transient_failures", True)
        mock_reconciler.apply.return_value = ReconcileResult(FAILED, "payment_failed", "constraint", retryable=False)
        body = stripe_event("invoice.payment_failed", {"customer": "c1"})
        response = _post(anon_client, body, sign_payload(body))
        assert response.status_code == 200

    def test_unhandled_type_acknowledged(self, anon_client):
        body = stripe_event("customer.created", {"id": "c1"})
        response = _post(anon_client, body, sign_payload(body))
        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"


class TestEndToEnd:
    def test_checkout_then_cancel(self, anon_client, db):
        lookup = MagicMock(return_value=SubscriptionDetails(price_id="price_pro_monthly", started_at=None, customer_id="c1"))

        def _reconciler(session: Session = Depends(get_db)):
            return AccountReconciler(session, PlanCatalog.from_settings(settings), lookup)

        fastapi_app.dependency_overrides[get_reconciler] = _reconciler
        try:
            body = stripe_event("checkout.session.completed", CHECKOUT, event_id="evt_c")
            assert _post(anon_client, body, sign_payload(body)).status_code == 200

            db.expire_all()
            assert db.get(UserAccount, "u1").plan == "pro"
            record = db.query(SubscriptionRecord).filter_by(stripe_subscription_id="s1").one()
            assert record.status == "active"
            assert record.plan == "pro"

            body = stripe_event("customer.subscription.deleted", {"id": "s1", "customer": "c1"}, event_id="evt_d")
            assert _post(anon_client, body, sign_payload(body)).status_code == 200
        finally:
            fastapi_app.dependency_overrides.pop(get_reconciler, None)

        db.expire_all()
        assert db.get(UserAccount, "u1").plan == "free"
        assert db.query(SubscriptionRecord).filter_by(stripe_subscription_id="s1").one().status == "cancelled"
        lookup.assert_called_once_with("s1")


class TestUnexpectedErrors:
    def _override(self, lookup):
        def _reconciler(session: Session = Depends(get_db)):
            return AccountReconciler(session, PlanCatalog.from_settings(settings), lookup)

        fastapi_app.dependency_overrides[get_reconciler] = _reconciler

    def test_broken_lookup_still_acknowledged(self, anon_client, db):
        self._override(MagicMock(side_effect=KeyError("start_date")))
        try:
            body = stripe_event("checkout.session.completed", CHECKOUT, event_id="evt_broken")
            response = _post(anon_client, body, sign_payload(body))
        finally:
            fastapi_app.dependency_overrides.pop(get_reconciler, None)

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": FAILED}
        db.expire_all()
        assert db.get(UserAccount, "u1") is None
        assert db.query(SubscriptionRecord).count() == 0

    def test_not_redelivered_even_with_retry_policy(self, anon_client, monkeypatch):
        monkeypatch.setattr(settings, "webhook_retry_transient_failures", True)
        self._override(MagicMock(side_effect=TypeError("unexpected payload")))
        try:
            body = stripe_event("checkout.session.completed", CHECKOUT, event_id="evt_type")
            response = _post(anon_client, body, sign_payload(body))
        finally:
            fastapi_app.dependency_overrides.pop(get_reconciler, None)

        assert response.status_code == 200
        assert response.json()["outcome"] == FAILED


def test_reconcile_runs_in_threadpool(anon_client, mock_reconciler):
    calls = []

    async def fake_threadpool(func, *args):
        calls.append(func)
        return func(*args)

    body = stripe_event("checkout.session.completed", CHECKOUT)
    with patch("app.api.billing.run_in_threadpool", new=fake_threadpool):
        response = _post(anon_client, body, sign_payload(body))

    assert response.status_code == 200
    assert calls == [mock_reconciler.apply]
    mock_reconciler.apply.assert_called_once()
