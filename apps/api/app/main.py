import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse

from app.api.billing import router as billing_router
from app.api.budgets import router as budgets_router
from app.api.clients import router as clients_router
from app.api.public import router as public_router
from app.core.config import settings
from app.core.logging import configure_logging
import app.models  # noqa: F401 ensures models are imported for metadata
from app.db.migrations import run_migrations

configure_logging()
from app.core.error_handlers import register_exception_handlers

logger = logging.getLogger(__name__)

app = FastAPI(title="Budget API")
register_exception_handlers(app)

# CORS should be outermost so it can attach headers to all responses, including errors
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=500)

# Routers
app.include_router(billing_router)  # Plans, checkout, portal, Stripe webhook
app.include_router(clients_router)  # Clients CRUD
app.include_router(budgets_router)  # Budgets, stats and quota
app.include_router(public_router)  # Public approval link


@app.get("/health")
def health():
    return JSONResponse({"ok": True}, headers={"Cache-Control": "public, max-age=60"})


@app.on_event("startup")
def on_startup() -> None:
    """API startup: run DB migrations with retries."""
    auto_migrate = (os.getenv("DB_MIGRATIONS_ON_STARTUP", "1").strip().lower() in ("1", "true", "yes", "on"))
    max_retries = int(os.getenv("DB_MIGRATIONS_MAX_RETRIES", "5") or 5)
    retry_delay = float(os.getenv("DB_MIGRATIONS_RETRY_DELAY_SEC", "3") or 3)

    if not auto_migrate:
        logger.info("Skipping database migrations on startup (DB_MIGRATIONS_ON_STARTUP=0)")
    else:
        logger.info("Running database migrations")
        run_migrations(settings.database_url, max_retries=max_retries, retry_delay=retry_delay)

    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set; every webhook delivery will be rejected")
    logger.info("API server ready (environment=%s)", os.getenv("ENVIRONMENT", "development"))
