"""
Pytest configuration for the budget API tests.
Points the app at a throwaway SQLite database and test Stripe settings.
"""

import hashlib
import hmac
import json
import os
import tempfile
import time

# Must be set before any app imports
_test_data_dir = tempfile.mkdtemp(prefix="budget_api_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_test_data_dir}/test.db"
os.environ["DB_MIGRATIONS_ON_STARTUP"] = "0"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_PRO"] = "price_pro_monthly"
os.environ["STRIPE_PRICE_PREMIUM"] = "price_premium_monthly"
os.environ.setdefault("APP_URL", "http://localhost:5173")

import pytest
from fastapi.testclient import TestClient

from app.api.auth import CurrentUser, get_current_user
from app.db.base import Base
from app.db.session import SessionLocal, engine
import app.models  # noqa: F401
from app.main import app as fastapi_app
from app.services.plan_catalog import PlanCatalog

WEBHOOK_SECRET = "whsec_test_secret"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    ts = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def stripe_event(event_type: str, obj: dict, *, event_id: str = "evt_1", created: int | None = None) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }).encode()


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog():
    return PlanCatalog({"price_pro_monthly": "pro", "price_premium_monthly": "premium"})


@pytest.fixture
def current_user():
    return CurrentUser(id="u1", email="u1@example.com", full_name="Ana Souza")


@pytest.fixture
def client(current_user):
    fastapi_app.dependency_overrides[get_current_user] = lambda: current_user
    try:
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
def anon_client():
    fastapi_app.dependency_overrides.clear()
    return TestClient(fastapi_app)
