"""Unauthenticated endpoints behind a budget's public approval link."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.budgets import BudgetOut, budget_out
from app.api.deps import get_budgets_service
from app.services.budgets_service import BudgetsService

router = APIRouter(prefix="/api/public/budgets", tags=["public"])


class IssuerOut(BaseModel):
    full_name: Optional[str] = None
    plan: Optional[str] = None


class PublicBudgetOut(BaseModel):
    budget: BudgetOut
    issuer: IssuerOut


@router.get("/{public_uuid}", response_model=PublicBudgetOut)
def get_public_budget(public_uuid: str, svc: BudgetsService = Depends(get_budgets_service)):
    budget, acct = svc.get_public(public_uuid)
    return PublicBudgetOut(
        budget=budget_out(budget),
        issuer=IssuerOut(full_name=acct.full_name if acct else None, plan=acct.plan if acct else None),
    )


@router.post("/{public_uuid}/approve", response_model=BudgetOut)
def approve_public_budget(public_uuid: str, svc: BudgetsService = Depends(get_budgets_service)):
    return budget_out(svc.approve_public(public_uuid))
