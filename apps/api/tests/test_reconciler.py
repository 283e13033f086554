"""
Reconciler tests: billing events applied to accounts and subscription records
against a real SQLite session.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.exceptions import BillingProviderError
from app.models.billing import ProcessedBillingEvent, SubscriptionRecord, UserAccount
from app.services.billing_events import (
    BillingEvent,
    CHECKOUT_COMPLETED,
    IGNORED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELLED,
)
from app.services.reconciler import (
    APPLIED,
    FAILED,
    SKIPPED,
    AccountReconciler,
    SubscriptionDetails,
    stripe_subscription_lookup,
)

T0 = datetime(2026, 10, 1, 12, 0, 0)


def checkout(account_id="u1", subscription_id="s1", customer_id="c1", event_id="evt_checkout", created=T0, price_id=None):
    return BillingEvent(
        kind=CHECKOUT_COMPLETED,
        event_type="checkout.session.completed",
        event_id=event_id,
        created_at=created,
        account_id=account_id,
        customer_id=customer_id,
        subscription_id=subscription_id,
        price_id=price_id,
    )


def invoice(kind, customer_id="c1", event_id="evt_invoice", created=T0 + timedelta(minutes=5)):
    event_type = "invoice.payment_succeeded" if kind == PAYMENT_SUCCEEDED else "invoice.payment_failed"
    return BillingEvent(kind=kind, event_type=event_type, event_id=event_id, created_at=created, customer_id=customer_id)


def deleted(subscription_id="s1", event_id="evt_deleted", created=T0 + timedelta(days=30)):
    return BillingEvent(
        kind=SUBSCRIPTION_CANCELLED,
        event_type="customer.subscription.deleted",
        event_id=event_id,
        created_at=created,
        subscription_id=subscription_id,
        customer_id="c1",
    )


@pytest.fixture
def lookup():
    prices = {"s1": "price_pro_monthly", "s2": "price_premium_monthly", "s3": "price_unknown"}
    fn = MagicMock(side_effect=lambda sub_id: SubscriptionDetails(price_id=prices.get(sub_id), started_at=T0 - timedelta(minutes=1)))
    return fn


@pytest.fixture
def reconciler(db, catalog, lookup):
    return AccountReconciler(db, catalog, lookup, dedup=True)


def _record(db, subscription_id="s1"):
    db.expire_all()
    return db.query(SubscriptionRecord).filter_by(stripe_subscription_id=subscription_id).one_or_none()


def _plan(db, owner_id="u1"):
    db.expire_all()
    acct = db.get(UserAccount, owner_id)
    return acct.plan if acct else None


# ---------------------------------------------------------------------------
# Checkout completed
# ---------------------------------------------------------------------------

class TestCheckoutCompleted:
    def test_pro_checkout_scenario(self, db, reconciler, lookup):
        result = reconciler.apply(checkout())
        assert result.outcome == APPLIED
        lookup.assert_called_once_with("s1")
        assert _plan(db) == "pro"
        record = _record(db)
        assert record.owner_id == "u1"
        assert record.status == "active"
        assert record.plan == "pro"
        assert record.stripe_customer_id == "c1"
        assert record.started_at == T0 - timedelta(minutes=1)
        assert record.ended_at is None

    def test_unknown_price_gives_free_plan_and_record(self, db, reconciler):
        result = reconciler.apply(checkout(subscription_id="s3"))
        assert result.outcome == APPLIED
        assert _plan(db) == "free"
        record = _record(db, "s3")
        assert record.plan == "free"
        assert record.status == "active"

    def test_price_on_event_skips_lookup(self, db, reconciler, lookup):
        reconciler.apply(checkout(price_id="price_premium_monthly"))
        lookup.assert_not_called()
        assert _plan(db) == "premium"

    def test_missing_account_id_is_ignored(self, db, reconciler):
        result = reconciler.apply(checkout(account_id=None))
        assert result.outcome == IGNORED
        assert db.query(SubscriptionRecord).count() == 0

    def test_existing_account_upgraded(self, db, reconciler):
        db.add(UserAccount(owner_id="u1", plan="free", email="u1@example.com"))
        db.commit()
        reconciler.apply(checkout())
        assert _plan(db) == "pro"

    def test_upsert_keeps_single_record(self, db, reconciler):
        reconciler.apply(checkout(event_id="evt_a"))
        reconciler.apply(checkout(event_id="evt_b", price_id="price_premium_monthly", created=T0 + timedelta(minutes=1)))
        assert db.query(SubscriptionRecord).count() == 1
        assert _record(db).plan == "premium"

    def test_cancelled_record_stays_cancelled(self, db, reconciler, lookup):
        reconciler.apply(checkout())
        reconciler.apply(deleted())
        result = reconciler.apply(checkout(event_id="evt_replay", created=T0 + timedelta(days=31)))
        assert result.outcome == SKIPPED
        assert _record(db).status == "cancelled"
        assert _plan(db) == "free"
        # Only the first checkout needed Stripe
        lookup.assert_called_once_with("s1")

    def test_replay_for_cancelled_record_does_not_need_stripe(self, db, reconciler, catalog):
        reconciler.apply(checkout())
        reconciler.apply(deleted())
        failing = MagicMock(side_effect=BillingProviderError("stripe down"))
        result = AccountReconciler(db, catalog, failing).apply(checkout(event_id="evt_replay", created=T0 + timedelta(days=31)))
        assert result.outcome == SKIPPED
        failing.assert_not_called()

    def test_stale_checkout_skipped_before_lookup(self, db, reconciler, lookup):
        reconciler.apply(checkout(event_id="evt_new", created=T0 + timedelta(hours=1)))
        result = reconciler.apply(checkout(event_id="evt_old", created=T0))
        assert result.outcome == SKIPPED
        assert lookup.call_count == 1

    def test_lookup_failure_is_retryable(self, db, catalog):
        failing = MagicMock(side_effect=BillingProviderError("stripe down"))
        result = AccountReconciler(db, catalog, failing).apply(checkout())
        assert result.outcome == FAILED
        assert result.retryable is True
        assert db.get(UserAccount, "u1") is None


# ---------------------------------------------------------------------------
# Payment succeeded / failed
# ---------------------------------------------------------------------------

class TestPaymentEvents:
    def test_failed_marks_inactive_without_downgrade(self, db, reconciler):
        reconciler.apply(checkout())
        result = reconciler.apply(invoice(PAYMENT_FAILED))
        assert result.outcome == APPLIED
        assert _record(db).status == "inactive"
        assert _plan(db) == "pro"

    def test_succeeded_reactivates(self, db, reconciler):
        reconciler.apply(checkout())
        reconciler.apply(invoice(PAYMENT_FAILED, event_id="evt_f"))
        reconciler.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_s", created=T0 + timedelta(minutes=10)))
        assert _record(db).status == "active"

    def test_duplicate_delivery_ends_active(self, db, reconciler):
        reconciler.apply(checkout())
        first = reconciler.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_dup"))
        second = reconciler.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_dup"))
        assert first.outcome == APPLIED
        assert second.outcome == SKIPPED
        assert second.reason == "duplicate event"
        assert _record(db).status == "active"
        assert db.query(ProcessedBillingEvent).filter_by(id="evt_dup").count() == 1

    def test_duplicate_delivery_without_dedup_ends_active(self, db, catalog, lookup):
        rec = AccountReconciler(db, catalog, lookup, dedup=False)
        rec.apply(checkout())
        assert rec.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_dup")).outcome == APPLIED
        assert rec.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_dup")).outcome == APPLIED
        assert _record(db).status == "active"
        assert db.query(ProcessedBillingEvent).count() == 0

    def test_late_failure_after_newer_success_is_skipped(self, db, reconciler):
        reconciler.apply(checkout())
        reconciler.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_new", created=T0 + timedelta(hours=2)))
        result = reconciler.apply(invoice(PAYMENT_FAILED, event_id="evt_old", created=T0 + timedelta(hours=1)))
        assert result.outcome == SKIPPED
        assert _record(db).status == "active"

    def test_out_of_order_is_last_write_wins_without_dedup(self, db, catalog, lookup):
        rec = AccountReconciler(db, catalog, lookup, dedup=False)
        rec.apply(checkout())
        rec.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_new", created=T0 + timedelta(hours=2)))
        rec.apply(invoice(PAYMENT_FAILED, event_id="evt_old", created=T0 + timedelta(hours=1)))
        assert _record(db).status == "inactive"

    def test_unknown_customer_is_ignored(self, db, reconciler):
        result = reconciler.apply(invoice(PAYMENT_SUCCEEDED, customer_id="c_unknown"))
        assert result.outcome == IGNORED

    def test_cancelled_record_not_reactivated(self, db, reconciler):
        reconciler.apply(checkout())
        reconciler.apply(deleted())
        result = reconciler.apply(invoice(PAYMENT_SUCCEEDED, event_id="evt_late", created=T0 + timedelta(days=40)))
        assert result.outcome == IGNORED
        assert _record(db).status == "cancelled"

    def test_updates_every_open_record_of_customer(self, db, reconciler):
        reconciler.apply(checkout(subscription_id="s1", event_id="evt_1"))
        reconciler.apply(checkout(subscription_id="s2", event_id="evt_2"))
        reconciler.apply(invoice(PAYMENT_FAILED))
        assert _record(db, "s1").status == "inactive"
        assert _record(db, "s2").status == "inactive"


# ---------------------------------------------------------------------------
# Subscription deleted
# ---------------------------------------------------------------------------

class TestSubscriptionCancelled:
    def test_downgrades_and_cancels(self, db, reconciler):
        reconciler.apply(checkout())
        result = reconciler.apply(deleted())
        assert result.outcome == APPLIED
        assert _plan(db) == "free"
        record = _record(db)
        assert record.status == "cancelled"
        assert record.ended_at is not None

    def test_after_failed_payment(self, db, reconciler):
        reconciler.apply(checkout())
        reconciler.apply(invoice(PAYMENT_FAILED))
        reconciler.apply(deleted())
        assert _record(db).status == "cancelled"

    def test_unknown_subscription_leaves_other_accounts(self, db, reconciler):
        reconciler.apply(checkout(account_id="u2", subscription_id="s2", customer_id="c2", event_id="evt_u2"))
        result = reconciler.apply(deleted(subscription_id="s_missing"))
        assert result.outcome == IGNORED
        assert _plan(db, "u2") == "premium"
        assert _record(db, "s2").status == "active"

    def test_second_deletion_is_skipped(self, db, reconciler):
        reconciler.apply(checkout())
        reconciler.apply(deleted(event_id="evt_d1"))
        ended = _record(db).ended_at
        result = reconciler.apply(deleted(event_id="evt_d2"))
        assert result.outcome == SKIPPED
        assert _record(db).ended_at == ended


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestFailures:
    def test_ignored_kind_touches_nothing(self, db, reconciler):
        event = BillingEvent(kind=IGNORED, event_type="customer.created", event_id="evt_x")
        assert reconciler.apply(event).outcome == IGNORED
        assert db.query(ProcessedBillingEvent).count() == 0

    def test_operational_error_rolls_back_both_writes(self, db, reconciler):
        boom = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(reconciler.repo, "mark_event_processed", side_effect=boom):
            result = reconciler.apply(checkout())
        assert result.outcome == FAILED
        assert result.retryable is True
        assert db.get(UserAccount, "u1") is None
        assert db.query(SubscriptionRecord).count() == 0

    def test_integrity_error_is_not_retryable(self, db, reconciler):
        boom = IntegrityError("INSERT", {}, Exception("duplicate key"))
        with patch.object(reconciler.repo, "mark_event_processed", side_effect=boom):
            result = reconciler.apply(checkout())
        assert result.outcome == FAILED
        assert result.retryable is False

    def test_unexpected_error_rolls_back_and_is_not_retryable(self, db, catalog):
        broken = MagicMock(side_effect=KeyError("start_date"))
        result = AccountReconciler(db, catalog, broken).apply(checkout())
        assert result.outcome == FAILED
        assert result.retryable is False
        assert "KeyError" in result.reason
        db.expire_all()
        assert db.get(UserAccount, "u1") is None
        assert db.query(ProcessedBillingEvent).count() == 0


class TestStripeLookup:
    def test_reads_price_and_start(self):
        sub = {
            "id": "s1",
            "customer": "c1",
            "start_date": 1760000000,
            "items": {"data": [{"price": {"id": "price_pro_monthly"}}]},
        }
        with patch("app.services.reconciler.stripe.Subscription.retrieve", return_value=sub) as retrieve:
            details = stripe_subscription_lookup("s1")
        retrieve.assert_called_once_with("s1")
        assert details.price_id == "price_pro_monthly"
        assert details.customer_id == "c1"
        assert details.started_at == datetime(2025, 10, 9, 8, 53, 20)
