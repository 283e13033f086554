import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import (
    get_current_account,
    get_db,
    get_plan_catalog,
    get_quota_evaluator,
    get_reconciler,
)
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.billing import UserAccount
from app.repositories.billing_repository import BillingRepository
from app.services.billing_events import parse_event
from app.services.billing_service import create_checkout_session, create_portal_session
from app.services.budgets_service import BudgetsService
from app.services.plan_catalog import PlanCatalog
from app.services.quota import QuotaEvaluator
from app.services.reconciler import FAILED, AccountReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    # Either an explicit Stripe price id or a plan name ("pro", "premium")
    price_id: Optional[str] = None
    plan: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class SubscriptionOut(BaseModel):
    plan: str
    status: str
    started_at: datetime
    ended_at: Optional[datetime] = None


class QuotaOut(BaseModel):
    allowed: bool
    plan: str
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None


class AccountOut(BaseModel):
    owner_id: str
    email: Optional[str] = None
    plan: str
    subscription: Optional[SubscriptionOut] = None
    quota: QuotaOut


@router.get("/plans")
def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)):
    """Plans that can be purchased, with their Stripe price ids."""
    return [{"plan": plan, "price_id": price_id} for price_id, plan in catalog.items()]


@router.get("/account", response_model=AccountOut)
def get_account(
    db: Session = Depends(get_db),
    acct: UserAccount = Depends(get_current_account),
    evaluator: QuotaEvaluator = Depends(get_quota_evaluator),
):
    """Return current user's plan, active subscription and monthly quota."""
    record = BillingRepository(db).get_active_subscription(acct.owner_id)
    decision = BudgetsService(db, evaluator).quota(acct.owner_id)
    return AccountOut(
        owner_id=acct.owner_id,
        email=acct.email,
        plan=acct.plan,
        subscription=SubscriptionOut(
            plan=record.plan,
            status=record.status,
            started_at=record.started_at,
            ended_at=record.ended_at,
        ) if record else None,
        quota=QuotaOut(
            allowed=decision.allowed,
            plan=decision.plan,
            used=decision.used,
            limit=decision.limit,
            remaining=decision.remaining,
        ),
    )


@router.post("/create-checkout-session")
def checkout_session(
    body: CheckoutRequest,
    acct: UserAccount = Depends(get_current_account),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    price_id = body.price_id
    if not price_id and body.plan:
        price_id = catalog.price_for(body.plan.strip().lower())
        if not price_id:
            raise ValidationError(f"Unknown plan: {body.plan}")
    session = create_checkout_session(
        catalog,
        price_id=price_id,
        account_id=acct.owner_id,
        account_email=acct.email,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return {"id": session.id, "url": session.url}


@router.post("/create-portal-session")
def portal_session(
    body: PortalRequest,
    db: Session = Depends(get_db),
    acct: UserAccount = Depends(get_current_account),
):
    url = create_portal_session(db, acct.owner_id, return_url=body.return_url)
    return {"url": url}


# Stripe webhook: keep account plan and subscription records in sync
@router.post("/webhook")
async def stripe_webhook(request: Request, reconciler: AccountReconciler = Depends(get_reconciler)):
    payload = await request.body()
    sig = request.headers.get("stripe-signature")

    # AuthenticationError propagates to the 400 handler before anything is applied
    event = parse_event(payload, sig, settings.stripe_webhook_secret, settings.stripe_webhook_tolerance_sec)
    # Database and Stripe calls are blocking
    result = await run_in_threadpool(reconciler.apply, event)

    if result.outcome == FAILED:
        logger.error("Webhook reconciliation failed for %s: %s", event.event_type, result.reason)
        if result.retryable and settings.webhook_retry_transient_failures:
            # Let Stripe redeliver
            return JSONResponse(
                status_code=503,
                content={"received": False, "outcome": result.outcome},
            )

    return {"received": True, "outcome": result.outcome}
