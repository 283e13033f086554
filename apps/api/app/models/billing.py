from datetime import datetime, timezone

from app.db.base import Base
from sqlalchemy import CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, validates

PLAN_FREE = "free"
PLAN_PRO = "pro"
PLAN_PREMIUM = "premium"
PLANS = (PLAN_FREE, PLAN_PRO, PLAN_PREMIUM)

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_CANCELLED = "cancelled"
SUBSCRIPTION_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE, STATUS_CANCELLED)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserAccount(Base):
    __tablename__ = "user_accounts"
    __table_args__ = (
        CheckConstraint("plan IN ('free', 'pro', 'premium')", name="ck_user_accounts_plan"),
    )

    # Supabase user id
    owner_id: Mapped[str] = mapped_column(String(128), primary_key=True, index=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan: Mapped[str] = mapped_column(String(16), default=PLAN_FREE, nullable=False)  # free, pro, premium

    # Audit
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @validates("plan")
    def _validate_plan(self, key: str, value: str | None) -> str:
        plan = (value or PLAN_FREE).strip().lower()
        if plan not in PLANS:
            raise ValueError(f"Unknown plan tier: {value!r}")
        return plan


class SubscriptionRecord(Base):
    """Local mirror of one Stripe subscription's lifecycle."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'cancelled')", name="ck_payments_status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)

    # Stripe linkage
    stripe_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)

    plan: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # active, inactive, cancelled

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Creation time of the newest provider event applied to this record
    last_event_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status == STATUS_CANCELLED


class ProcessedBillingEvent(Base):
    __tablename__ = "billing_events"

    # Stripe event id (evt_...)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
