from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from app.api.auth import CurrentUser, get_current_user
from app.core.config import settings
from app.db.session import get_db
from app.models.billing import UserAccount
from app.services.accounts_service import ensure_user_account
from app.services.budgets_service import BudgetsService, ClientsService
from app.services.plan_catalog import PlanCatalog
from app.services.quota import QuotaEvaluator
from app.services.reconciler import AccountReconciler, build_reconciler


def get_plan_catalog() -> PlanCatalog:
    return PlanCatalog.from_settings(settings)


def get_quota_evaluator() -> QuotaEvaluator:
    return QuotaEvaluator(settings.free_monthly_budget_limit)


def get_reconciler(db: Session = Depends(get_db)) -> AccountReconciler:
    return build_reconciler(db)


def get_budgets_service(
    db: Session = Depends(get_db),
    evaluator: QuotaEvaluator = Depends(get_quota_evaluator),
) -> BudgetsService:
    return BudgetsService(db, evaluator)


def get_clients_service(db: Session = Depends(get_db)) -> ClientsService:
    return ClientsService(db)


def get_current_account(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UserAccount:
    return ensure_user_account(
        db,
        current_user["id"],
        email=current_user.get("email"),
        full_name=current_user.get("full_name"),
    )


__all__ = [
    "get_db",
    "get_plan_catalog",
    "get_quota_evaluator",
    "get_reconciler",
    "get_budgets_service",
    "get_clients_service",
    "get_current_account",
]
