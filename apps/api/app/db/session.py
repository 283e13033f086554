from __future__ import annotations

import logging
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # FastAPI runs sync endpoints in a threadpool; sqlite connections must be shareable
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    class_=Session,
    expire_on_commit=False,
    autoflush=False,
)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a Session.

    Usage:
        def route(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit(db: Session) -> None:
    """Commit the unit of work, surfacing storage failures as PersistenceError."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Commit failed")
        raise PersistenceError() from e
