from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, NotFoundError, QuotaExceededError, ValidationError
from app.db.session import commit
from app.models.billing import UserAccount, utcnow
from app.models.budgets import BUDGET_APPROVED, BUDGET_PENDING, Budget, BudgetItem, Client
from app.repositories.billing_repository import BillingRepository
from app.repositories.budgets_repository import BudgetsRepository, ClientsRepository
from app.services.accounts_service import ensure_user_account
from app.services.quota import QuotaDecision, QuotaEvaluator, month_bounds

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class ItemInput:
    description: str
    quantity: Decimal
    unit_price: Decimal


@dataclass
class BudgetStats:
    total: int
    pending: int
    approved: int
    this_month: int


def _line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return (Decimal(quantity) * Decimal(unit_price)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _validate_items(items: Sequence[ItemInput]) -> None:
    if not items:
        raise ValidationError("A budget needs at least one item")
    for index, item in enumerate(items):
        if not (item.description or "").strip():
            raise ValidationError(f"items.{index}.description is required")
        if Decimal(item.quantity) <= 0:
            raise ValidationError(f"items.{index}.quantity must be greater than zero")
        if Decimal(item.unit_price) <= 0:
            raise ValidationError(f"items.{index}.unit_price must be greater than zero")


class BudgetsService:
    """Budgets with the plan quota enforced at insert time."""

    def __init__(self, db: Session, evaluator: QuotaEvaluator):
        self.db = db
        self.evaluator = evaluator
        self.billing_repo = BillingRepository(db)
        self.budgets_repo = BudgetsRepository(db)
        self.clients_repo = ClientsRepository(db)

    def quota(self, owner_id: str, now: Optional[datetime] = None) -> QuotaDecision:
        """Advisory check; create_budget re-checks under a row lock."""
        acct = ensure_user_account(self.db, owner_id)
        return self._evaluate(acct, now)

    def _evaluate(self, acct: UserAccount, now: Optional[datetime]) -> QuotaDecision:
        start, end = month_bounds(now)
        used = self.budgets_repo.count_created_between(acct.owner_id, start, end)
        return self.evaluator.evaluate(acct.plan, used)

    def list_budgets(self, owner_id: str) -> list[Budget]:
        return self.budgets_repo.list_for_owner(owner_id)

    def get_budget(self, owner_id: str, budget_id: str) -> Budget:
        budget = self.budgets_repo.get(owner_id, budget_id)
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget

    def create_budget(
        self,
        owner_id: str,
        *,
        client_id: str,
        title: str,
        description: Optional[str],
        items: Sequence[ItemInput],
        now: Optional[datetime] = None,
    ) -> Budget:
        _validate_items(items)
        if not (title or "").strip():
            raise ValidationError("title is required")

        ensure_user_account(self.db, owner_id)
        # Serialize concurrent creations for the same account until commit
        acct = self.billing_repo.get_account(owner_id, for_update=True)
        decision = self._evaluate(acct, now)
        if not decision.allowed:
            self.db.rollback()
            raise QuotaExceededError(
                f"The {decision.plan} plan allows {decision.limit} budgets per month",
                limit=decision.limit,
                used=decision.used,
            )

        client = self.clients_repo.get(owner_id, client_id)
        if client is None:
            self.db.rollback()
            raise NotFoundError("Client not found")

        budget = Budget(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            client=client,
            title=title.strip(),
            description=description,
            status=BUDGET_PENDING,
            public_uuid=str(uuid.uuid4()),
            created_at=now or utcnow(),
        )
        budget.items = [
            BudgetItem(
                id=str(uuid.uuid4()),
                position=position,
                description=item.description.strip(),
                quantity=Decimal(item.quantity),
                unit_price=Decimal(item.unit_price),
                total_price=_line_total(item.quantity, item.unit_price),
            )
            for position, item in enumerate(items)
        ]
        self.budgets_repo.insert(budget)
        commit(self.db)
        logger.info("Budget %s created for %s (%s/%s this month)", budget.id, owner_id, decision.used + 1, decision.limit or "unlimited")
        return budget

    def delete_budget(self, owner_id: str, budget_id: str) -> None:
        budget = self.get_budget(owner_id, budget_id)
        self.budgets_repo.delete(budget)
        commit(self.db)

    def stats(self, owner_id: str, now: Optional[datetime] = None) -> BudgetStats:
        budgets = self.budgets_repo.list_for_owner(owner_id)
        start, end = month_bounds(now)
        return BudgetStats(
            total=len(budgets),
            pending=sum(1 for b in budgets if b.status == BUDGET_PENDING),
            approved=sum(1 for b in budgets if b.status == BUDGET_APPROVED),
            this_month=sum(1 for b in budgets if start <= b.created_at < end),
        )

    # Public approval link

    def get_public(self, public_uuid: str) -> tuple[Budget, Optional[UserAccount]]:
        budget = self.budgets_repo.get_by_public_uuid(public_uuid)
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget, self.billing_repo.get_account(budget.owner_id)

    def approve_public(self, public_uuid: str) -> Budget:
        budget = self.budgets_repo.get_by_public_uuid(public_uuid, for_update=True)
        if budget is None:
            raise NotFoundError("Budget not found")
        if budget.status == BUDGET_APPROVED:
            # Approving twice keeps the first approval time
            return budget
        budget.status = BUDGET_APPROVED
        budget.approved_at = utcnow()
        commit(self.db)
        logger.info("Budget %s approved via public link", budget.id)
        return budget


class ClientsService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = ClientsRepository(db)

    def list_clients(self, owner_id: str) -> list[Client]:
        return self.repo.list_for_owner(owner_id)

    def get_client(self, owner_id: str, client_id: str) -> Client:
        client = self.repo.get(owner_id, client_id)
        if client is None:
            raise NotFoundError("Client not found")
        return client

    def create_client(self, owner_id: str, *, name: str, email: str, phone: Optional[str] = None) -> Client:
        if not (name or "").strip() or not (email or "").strip():
            raise ValidationError("name and email are required")
        client = self.repo.insert(Client(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name.strip(),
            email=email.strip(),
            phone=phone,
        ))
        commit(self.db)
        return client

    def update_client(
        self,
        owner_id: str,
        client_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Client:
        client = self.get_client(owner_id, client_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("name cannot be empty")
            client.name = name.strip()
        if email is not None:
            if not email.strip():
                raise ValidationError("email cannot be empty")
            client.email = email.strip()
        if phone is not None:
            client.phone = phone or None
        commit(self.db)
        return client

    def delete_client(self, owner_id: str, client_id: str) -> None:
        client = self.get_client(owner_id, client_id)
        if self.repo.count_budgets(client.id):
            raise ConflictError("Client has budgets; delete them first")
        self.repo.delete(client)
        commit(self.db)
