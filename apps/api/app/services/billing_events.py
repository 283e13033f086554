"""Verification and classification of inbound Stripe webhook deliveries.

Nothing here touches the database or the network: ``parse_event`` turns a raw
signed body into a ``BillingEvent`` that carries exactly what the reconciler
needs, or raises ``AuthenticationError``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from app.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout_completed"
PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_FAILED = "payment_failed"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"
IGNORED = "ignored"

EVENT_KINDS = {
    "checkout.session.completed": CHECKOUT_COMPLETED,
    "invoice.payment_succeeded": PAYMENT_SUCCEEDED,
    "invoice.paid": PAYMENT_SUCCEEDED,
    "invoice.payment_failed": PAYMENT_FAILED,
    "customer.subscription.deleted": SUBSCRIPTION_CANCELLED,
}

# Metadata keys that may carry our account id, in lookup order
ACCOUNT_METADATA_KEYS = ("userId", "account_id", "owner_id")


@dataclass(frozen=True)
class BillingEvent:
    kind: str
    event_type: str
    event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    account_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    started_at: Optional[datetime] = None


def from_epoch(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


def _ref(value: Any) -> Optional[str]:
    # Stripe sends ids as strings, or full objects when the field was expanded
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _first_price_id(container: Any) -> Optional[str]:
    if not isinstance(container, dict):
        return None
    data = container.get("data") or []
    if not data:
        return None
    first = data[0] or {}
    price = first.get("price")
    if isinstance(price, dict):
        return price.get("id")
    return _ref(price) or _ref(first.get("plan"))


def _account_id(metadata: Any) -> Optional[str]:
    if not isinstance(metadata, dict):
        return None
    for key in ACCOUNT_METADATA_KEYS:
        if metadata.get(key):
            return str(metadata[key])
    return None


def _invoice_subscription(invoice: dict) -> Optional[str]:
    sub = _ref(invoice.get("subscription"))
    if sub:
        return sub
    # Newer API versions nest it under parent.subscription_details
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _ref(details.get("subscription"))


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str], tolerance: int = 300) -> str:
    """Check the Stripe-Signature header and return the decoded body."""
    if not secret:
        raise AuthenticationError("Webhook secret not configured")
    if not signature:
        raise AuthenticationError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
    except UnicodeDecodeError:
        raise AuthenticationError("Webhook body is not valid UTF-8")
    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise AuthenticationError(f"Invalid signature: {e}")
    return body


def classify(data: dict) -> BillingEvent:
    """Turn a decoded Stripe event into a BillingEvent."""
    event_type = str(data.get("type") or "")
    kind = EVENT_KINDS.get(event_type, IGNORED)
    obj = (data.get("data") or {}).get("object") or {}
    base = {
        "event_type": event_type,
        "event_id": data.get("id"),
        "created_at": from_epoch(data.get("created")),
    }

    if kind == CHECKOUT_COMPLETED:
        return BillingEvent(
            kind=kind,
            account_id=_account_id(obj.get("metadata")),
            customer_id=_ref(obj.get("customer")),
            subscription_id=_ref(obj.get("subscription")),
            price_id=_first_price_id(obj.get("line_items")),
            **base,
        )
    if kind in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        return BillingEvent(
            kind=kind,
            customer_id=_ref(obj.get("customer")),
            subscription_id=_invoice_subscription(obj),
            **base,
        )
    if kind == SUBSCRIPTION_CANCELLED:
        return BillingEvent(
            kind=kind,
            account_id=_account_id(obj.get("metadata")),
            customer_id=_ref(obj.get("customer")),
            subscription_id=_ref(obj.get("id")),
            price_id=_first_price_id(obj.get("items")),
            started_at=from_epoch(obj.get("start_date")),
            **base,
        )

    logger.info("Ignoring unhandled billing event type: %s", event_type or "<missing>")
    return BillingEvent(kind=IGNORED, **base)


def parse_event(payload: bytes, signature: Optional[str], secret: Optional[str], tolerance: int = 300) -> BillingEvent:
    body = verify_signature(payload, signature, secret, tolerance)
    try:
        data = json.loads(body)
    except ValueError:
        raise AuthenticationError("Invalid webhook payload")
    if not isinstance(data, dict):
        raise AuthenticationError("Invalid webhook payload")
    return classify(data)
