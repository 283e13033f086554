"""Applies normalized billing events to accounts and subscription records.

Each event is applied in one transaction: the account plan and the
subscription record commit together or not at all. Outcomes are returned as
``ReconcileResult`` values; the webhook route decides what the provider sees.

Duplicate and out-of-order deliveries are guarded when ``dedup`` is on: an
event id already in ``billing_events`` is skipped, and so is an event older
than the record's ``last_event_at``. With ``dedup`` off the handlers are
last-write-wins.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import stripe
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import BillingProviderError
from app.models.billing import (
    PLAN_FREE,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_INACTIVE,
    SubscriptionRecord,
    UserAccount,
    utcnow,
)
from app.repositories.billing_repository import BillingRepository
from app.services.billing_events import (
    BillingEvent,
    CHECKOUT_COMPLETED,
    IGNORED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELLED,
    from_epoch,
)
from app.services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: str  # applied, ignored, skipped, failed
    kind: str
    reason: str = ""
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome != FAILED


@dataclass(frozen=True)
class SubscriptionDetails:
    price_id: Optional[str]
    started_at: Optional[datetime]
    customer_id: Optional[str] = None


SubscriptionLookup = Callable[[str], SubscriptionDetails]


def stripe_subscription_lookup(subscription_id: str) -> SubscriptionDetails:
    """Fetch price and start date of a subscription from Stripe."""
    if not settings.stripe_secret_key:
        raise BillingProviderError("Stripe not configured")
    stripe.api_key = settings.stripe_secret_key
    try:
        sub = stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        raise BillingProviderError(f"Failed to retrieve subscription {subscription_id}: {e}") from e
    items = sub["items"]["data"]
    price_id = items[0]["price"]["id"] if items else None
    return SubscriptionDetails(
        price_id=price_id,
        started_at=from_epoch(sub["start_date"]),
        customer_id=sub["customer"],
    )


def _is_transient(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class AccountReconciler:
    def __init__(
        self,
        db: Session,
        catalog: PlanCatalog,
        lookup: Optional[SubscriptionLookup] = None,
        *,
        dedup: bool = True,
    ):
        self.db = db
        self.repo = BillingRepository(db)
        self.catalog = catalog
        self.lookup = lookup
        self.dedup = dedup
        self._handlers = {
            CHECKOUT_COMPLETED: self._checkout_completed,
            PAYMENT_SUCCEEDED: self._payment_succeeded,
            PAYMENT_FAILED: self._payment_failed,
            SUBSCRIPTION_CANCELLED: self._subscription_cancelled,
        }

    def apply(self, event: BillingEvent) -> ReconcileResult:
        handler = self._handlers.get(event.kind)
        if handler is None:
            return ReconcileResult(IGNORED, event.kind, f"unhandled event type {event.event_type or '<missing>'}")

        try:
            if self.dedup and event.event_id and self.repo.has_processed_event(event.event_id):
                logger.info("Skipping duplicate billing event %s (%s)", event.event_id, event.event_type)
                return ReconcileResult(SKIPPED, event.kind, "duplicate event")

            result = handler(event)

            if self.dedup and event.event_id:
                self.repo.mark_event_processed(event.event_id, event.event_type)
            self.db.commit()
        except BillingProviderError as e:
            self.db.rollback()
            logger.error("Billing event %s (%s) failed: %s", event.event_id, event.event_type, e)
            return ReconcileResult(FAILED, event.kind, str(e), retryable=True)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Billing event %s (%s) failed to persist", event.event_id, event.event_type)
            return ReconcileResult(FAILED, event.kind, str(e), retryable=_is_transient(e))
        except Exception as e:
            # A verified delivery is acknowledged even when a handler breaks
            self.db.rollback()
            logger.exception("Billing event %s (%s) failed unexpectedly", event.event_id, event.event_type)
            return ReconcileResult(FAILED, event.kind, f"{type(e).__name__}: {e}", retryable=False)

        log = logger.info if result.outcome == APPLIED else logger.warning
        log("Billing event %s (%s): %s %s", event.event_id, event.event_type, result.outcome, result.reason)
        return result

    # Helpers

    def _is_stale(self, record: SubscriptionRecord, event: BillingEvent) -> bool:
        if not self.dedup or event.created_at is None or record.last_event_at is None:
            return False
        return event.created_at < record.last_event_at

    @staticmethod
    def _stamp(record: SubscriptionRecord, event: BillingEvent) -> None:
        if event.created_at is None:
            return
        if record.last_event_at is None or event.created_at > record.last_event_at:
            record.last_event_at = event.created_at

    def _get_or_create_account(self, owner_id: str) -> UserAccount:
        account = self.repo.get_account(owner_id)
        if account is None:
            account = self.repo.insert_account(UserAccount(owner_id=owner_id, plan=PLAN_FREE))
        return account

    # Handlers

    def _checkout_completed(self, event: BillingEvent) -> ReconcileResult:
        if not event.account_id:
            return ReconcileResult(IGNORED, event.kind, "checkout session without account id")

        record = self.repo.get_subscription(event.subscription_id) if event.subscription_id else None
        if record is not None and record.is_terminal:
            return ReconcileResult(SKIPPED, event.kind, f"subscription {event.subscription_id} already cancelled")
        if record is not None and self._is_stale(record, event):
            return ReconcileResult(SKIPPED, event.kind, "stale event")

        price_id = event.price_id
        started_at = event.started_at
        customer_id = event.customer_id
        if price_id is None and event.subscription_id and self.lookup is not None:
            details = self.lookup(event.subscription_id)
            price_id = details.price_id
            started_at = started_at or details.started_at
            customer_id = customer_id or details.customer_id
        plan = self.catalog.resolve(price_id)

        account = self._get_or_create_account(event.account_id)
        account.plan = plan

        if record is None:
            record = self.repo.insert_subscription(SubscriptionRecord(
                id=str(uuid.uuid4()),
                owner_id=account.owner_id,
                stripe_customer_id=customer_id,
                stripe_subscription_id=event.subscription_id,
                plan=plan,
                status=STATUS_ACTIVE,
                started_at=started_at or event.created_at or utcnow(),
            ))
        else:
            record.owner_id = account.owner_id
            record.stripe_customer_id = customer_id or record.stripe_customer_id
            record.plan = plan
            record.status = STATUS_ACTIVE
            if started_at:
                record.started_at = started_at
        self._stamp(record, event)
        return ReconcileResult(APPLIED, event.kind, f"account {account.owner_id} on plan {plan}")

    def _set_customer_status(self, event: BillingEvent, status: str) -> ReconcileResult:
        if not event.customer_id:
            return ReconcileResult(IGNORED, event.kind, "event without customer id")
        records = self.repo.list_open_subscriptions_for_customer(event.customer_id)
        if not records:
            return ReconcileResult(IGNORED, event.kind, f"no subscription for customer {event.customer_id}")

        changed = 0
        for record in records:
            if self._is_stale(record, event):
                continue
            record.status = status
            self._stamp(record, event)
            changed += 1
        if not changed:
            return ReconcileResult(SKIPPED, event.kind, "stale event")
        return ReconcileResult(APPLIED, event.kind, f"{changed} subscription(s) {status}")

    def _payment_succeeded(self, event: BillingEvent) -> ReconcileResult:
        return self._set_customer_status(event, STATUS_ACTIVE)

    def _payment_failed(self, event: BillingEvent) -> ReconcileResult:
        # The account keeps its plan; downgrade happens on subscription deletion
        return self._set_customer_status(event, STATUS_INACTIVE)

    def _subscription_cancelled(self, event: BillingEvent) -> ReconcileResult:
        if not event.subscription_id:
            return ReconcileResult(IGNORED, event.kind, "event without subscription id")
        record = self.repo.get_subscription(event.subscription_id)
        if record is None:
            return ReconcileResult(IGNORED, event.kind, f"no subscription {event.subscription_id}")
        if record.is_terminal:
            return ReconcileResult(SKIPPED, event.kind, "subscription already cancelled")

        account = self.repo.get_account(record.owner_id)
        if account is not None:
            account.plan = PLAN_FREE
        record.status = STATUS_CANCELLED
        record.ended_at = utcnow()
        self._stamp(record, event)
        return ReconcileResult(APPLIED, event.kind, f"account {record.owner_id} downgraded to {PLAN_FREE}")


def build_reconciler(db: Session) -> AccountReconciler:
    return AccountReconciler(
        db,
        PlanCatalog.from_settings(settings),
        stripe_subscription_lookup,
        dedup=settings.billing_event_dedup,
    )
