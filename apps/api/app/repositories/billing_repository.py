from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.billing import (
    ProcessedBillingEvent,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    SubscriptionRecord,
    UserAccount,
)


class BillingRepository:
    """Repository for accounts, subscription records and processed billing events.

    Methods only flush; committing is the caller's unit-of-work decision.
    """

    def __init__(self, db: Session):
        self.db = db

    # Accounts

    def get_account(self, owner_id: str, *, for_update: bool = False) -> Optional[UserAccount]:
        stmt = select(UserAccount).where(UserAccount.owner_id == owner_id)
        if for_update:
            # Reload the row under the lock instead of trusting the identity map
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def insert_account(self, account: UserAccount) -> UserAccount:
        self.db.add(account)
        self.db.flush()
        return account

    # Subscription records

    def get_subscription(self, stripe_subscription_id: str) -> Optional[SubscriptionRecord]:
        result = self.db.execute(
            select(SubscriptionRecord).where(SubscriptionRecord.stripe_subscription_id == stripe_subscription_id)
        )
        return result.scalar_one_or_none()

    def list_open_subscriptions_for_customer(self, stripe_customer_id: str) -> list[SubscriptionRecord]:
        result = self.db.execute(
            select(SubscriptionRecord)
            .where(
                SubscriptionRecord.stripe_customer_id == stripe_customer_id,
                SubscriptionRecord.status != STATUS_CANCELLED,
            )
            .order_by(SubscriptionRecord.started_at.desc())
        )
        return list(result.scalars().all())

    def get_active_subscription(self, owner_id: str) -> Optional[SubscriptionRecord]:
        result = self.db.execute(
            select(SubscriptionRecord)
            .where(
                SubscriptionRecord.owner_id == owner_id,
                SubscriptionRecord.status == STATUS_ACTIVE,
            )
            .order_by(SubscriptionRecord.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def list_subscriptions(self, owner_id: str) -> list[SubscriptionRecord]:
        result = self.db.execute(
            select(SubscriptionRecord)
            .where(SubscriptionRecord.owner_id == owner_id)
            .order_by(SubscriptionRecord.started_at.desc())
        )
        return list(result.scalars().all())

    def insert_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        self.db.add(record)
        self.db.flush()
        return record

    # Processed events

    def has_processed_event(self, event_id: str) -> bool:
        return self.db.get(ProcessedBillingEvent, event_id) is not None

    def mark_event_processed(self, event_id: str, event_type: str) -> None:
        self.db.add(ProcessedBillingEvent(id=event_id, event_type=event_type))
        self.db.flush()
