from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import BillingProviderError, NotFoundError, ValidationError
from app.repositories.billing_repository import BillingRepository
from app.services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str] = None


def _configure_stripe() -> None:
    if not settings.stripe_secret_key:
        raise BillingProviderError("Stripe not configured")
    stripe.api_key = settings.stripe_secret_key


def create_checkout_session(
    catalog: PlanCatalog,
    *,
    price_id: Optional[str],
    account_id: Optional[str],
    account_email: Optional[str],
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutSession:
    """Open a Stripe Checkout session for a subscription to ``price_id``.

    The account id travels in the session and subscription metadata so the
    webhook can attribute the resulting events.
    """
    if not price_id or not account_id or not account_email:
        raise ValidationError("Missing required parameters: price, account id and email are required")
    if not catalog.is_known_price(price_id):
        raise ValidationError(f"Unknown price: {price_id}")

    _configure_stripe()
    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url or f"{settings.app_url}/billing?success=true",
            cancel_url=cancel_url or f"{settings.app_url}/billing?canceled=true",
            customer_email=account_email,
            metadata={"userId": account_id},
            subscription_data={"metadata": {"userId": account_id}},
        )
    except stripe.StripeError as e:
        logger.error("Error creating checkout session for %s: %s", account_id, e)
        raise BillingProviderError("Failed to create checkout session") from e

    logger.info("Checkout session %s created for account %s (%s)", session["id"], account_id, price_id)
    return CheckoutSession(id=session["id"], url=session["url"])


def create_portal_session(db: Session, account_id: str, return_url: Optional[str] = None) -> str:
    """Open a Stripe billing portal session for the account's active subscription."""
    record = BillingRepository(db).get_active_subscription(account_id)
    if record is None or not record.stripe_customer_id:
        raise NotFoundError("No active subscription found")

    _configure_stripe()
    try:
        portal = stripe.billing_portal.Session.create(
            customer=record.stripe_customer_id,
            return_url=return_url or f"{settings.app_url}/billing",
        )
    except stripe.StripeError as e:
        logger.error("Error creating portal session for %s: %s", account_id, e)
        raise BillingProviderError("Failed to create portal session") from e
    return portal["url"]
