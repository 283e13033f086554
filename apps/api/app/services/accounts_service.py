from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.billing import PLAN_FREE, UserAccount
from app.repositories.billing_repository import BillingRepository


def ensure_user_account(
    db: Session,
    owner_id: str,
    *,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
) -> UserAccount:
    """Return the caller's account, creating it on the FREE plan on first use.

    Profile fields from the token are snapshotted when they change.
    """
    repo = BillingRepository(db)
    acct = repo.get_account(owner_id)
    if acct is None:
        try:
            acct = repo.insert_account(UserAccount(
                owner_id=owner_id,
                email=email,
                full_name=full_name,
                plan=PLAN_FREE,
            ))
            db.commit()
        except IntegrityError:
            # Concurrent first request created it
            db.rollback()
            acct = repo.get_account(owner_id)
        return acct

    changed = False
    if email and acct.email != email:
        acct.email = email
        changed = True
    if full_name and acct.full_name != full_name:
        acct.full_name = full_name
        changed = True
    if changed:
        db.commit()
    return acct
