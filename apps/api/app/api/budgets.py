from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_budgets_service, get_current_account
from app.models.billing import UserAccount
from app.models.budgets import Budget
from app.services.budgets_service import BudgetsService, ItemInput

router = APIRouter(prefix="/api/budgets", tags=["budgets"])


class BudgetItemIn(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., gt=0)


class BudgetCreate(BaseModel):
    client_id: str
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    items: list[BudgetItemIn] = Field(..., min_length=1)


class BudgetItemOut(BaseModel):
    id: str
    description: str
    quantity: float
    unit_price: float
    total_price: float


class BudgetClientOut(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None


class BudgetOut(BaseModel):
    id: str
    client_id: str
    title: str
    description: Optional[str] = None
    status: str
    approved_at: Optional[datetime] = None
    public_uuid: str
    created_at: datetime
    client: Optional[BudgetClientOut] = None
    items: list[BudgetItemOut]
    total_amount: float


def budget_out(budget: Budget) -> BudgetOut:
    client = budget.client
    return BudgetOut(
        id=budget.id,
        client_id=budget.client_id,
        title=budget.title,
        description=budget.description,
        status=budget.status,
        approved_at=budget.approved_at,
        public_uuid=budget.public_uuid,
        created_at=budget.created_at,
        client=BudgetClientOut(id=client.id, name=client.name, email=client.email, phone=client.phone) if client else None,
        items=[
            BudgetItemOut(
                id=item.id,
                description=item.description,
                quantity=float(item.quantity),
                unit_price=float(item.unit_price),
                total_price=float(item.total_price),
            )
            for item in budget.items
        ],
        total_amount=float(budget.total_amount),
    )


@router.get("", response_model=list[BudgetOut])
def list_budgets(acct: UserAccount = Depends(get_current_account), svc: BudgetsService = Depends(get_budgets_service)):
    return [budget_out(b) for b in svc.list_budgets(acct.owner_id)]


@router.get("/stats")
def budget_stats(acct: UserAccount = Depends(get_current_account), svc: BudgetsService = Depends(get_budgets_service)):
    stats = svc.stats(acct.owner_id)
    return {
        "total": stats.total,
        "pending": stats.pending,
        "approved": stats.approved,
        "this_month": stats.this_month,
    }


@router.get("/quota")
def budget_quota(acct: UserAccount = Depends(get_current_account), svc: BudgetsService = Depends(get_budgets_service)):
    decision = svc.quota(acct.owner_id)
    return {
        "allowed": decision.allowed,
        "plan": decision.plan,
        "used": decision.used,
        "limit": decision.limit,
        "remaining": decision.remaining,
    }


@router.post("", response_model=BudgetOut, status_code=201)
def create_budget(body: BudgetCreate, acct: UserAccount = Depends(get_current_account), svc: BudgetsService = Depends(get_budgets_service)):
    budget = svc.create_budget(
        acct.owner_id,
        client_id=body.client_id,
        title=body.title,
        description=body.description,
        items=[ItemInput(description=i.description, quantity=i.quantity, unit_price=i.unit_price) for i in body.items],
    )
    return budget_out(budget)


@router.get("/{budget_id}", response_model=BudgetOut)
def get_budget(budget_id: str, acct: UserAccount = Depends(get_current_account), svc: BudgetsService = Depends(get_budgets_service)):
    return budget_out(svc.get_budget(acct.owner_id, budget_id))


@router.delete("/{budget_id}")
def delete_budget(budget_id: str, acct: UserAccount = Depends(get_current_account), svc: BudgetsService = Depends(get_budgets_service)):
    svc.delete_budget(acct.owner_id, budget_id)
    return {"deleted": True}
