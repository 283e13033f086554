from datetime import datetime
from decimal import Decimal

from app.db.base import Base
from app.models.billing import utcnow
from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

BUDGET_PENDING = "pending"
BUDGET_APPROVED = "approved"


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Budget(Base):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id"), index=True, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=BUDGET_PENDING, nullable=False)  # pending, approved
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Token for the public approval link
    public_uuid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)

    client: Mapped[Client] = relationship(lazy="joined")
    items: Mapped[list["BudgetItem"]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetItem.position",
        lazy="selectin",
    )

    @property
    def total_amount(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))


class BudgetItem(Base):
    __tablename__ = "budget_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    budget_id: Mapped[str] = mapped_column(ForeignKey("budgets.id", ondelete="CASCADE"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(default=0, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    budget: Mapped[Budget] = relationship(back_populates="items")
