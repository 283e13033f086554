"""Alembic migrations applied at API startup."""

import logging
import socket
import time
from pathlib import Path
from urllib.parse import urlparse

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _check_database_host(database_url: str) -> None:
    # Basic DNS precheck for clearer errors; sqlite has no host
    parsed = urlparse(database_url)
    if parsed.scheme.startswith("sqlite"):
        return
    host = parsed.hostname
    if not host:
        raise RuntimeError("Invalid DATABASE_URL: host is missing")
    try:
        socket.getaddrinfo(host, parsed.port or 5432)
    except OSError as e:
        logger.error("Cannot resolve database host '%s'. Check internet/VPN/DNS and DATABASE_URL. Error: %s", host, e)


def run_migrations(database_url: str, *, max_retries: int = 5, retry_delay: float = 3.0) -> None:
    """Upgrade the database to head, retrying transient connection failures."""
    _check_database_host(database_url)

    alembic_cfg = AlembicConfig(str(ALEMBIC_INI))
    alembic_cfg.attributes["invoked_by_app"] = True
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))

    last_err: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            alembic_command.upgrade(alembic_cfg, "head")
            logger.info("Database migrations applied")
            return
        except Exception as e:
            last_err = e
            logger.error("Alembic migration attempt %s/%s failed: %s", attempt, max_retries, e)
            if attempt < max_retries:
                time.sleep(retry_delay)

    logger.error(
        "Alembic migration failed after retries. "
        "If this is a temporary network/DNS issue, try again. "
        "To skip auto-migrations, set DB_MIGRATIONS_ON_STARTUP=0."
    )
    raise last_err
