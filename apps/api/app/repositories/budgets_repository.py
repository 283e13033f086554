from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.budgets import Budget, Client


class ClientsRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_for_owner(self, owner_id: str) -> list[Client]:
        result = self.db.execute(select(Client).where(Client.owner_id == owner_id).order_by(Client.name.asc()))
        return list(result.scalars().all())

    def get(self, owner_id: str, client_id: str) -> Optional[Client]:
        result = self.db.execute(select(Client).where(Client.id == client_id, Client.owner_id == owner_id))
        return result.scalar_one_or_none()

    def insert(self, client: Client) -> Client:
        self.db.add(client)
        self.db.flush()
        return client

    def delete(self, client: Client) -> None:
        self.db.delete(client)
        self.db.flush()

    def count_budgets(self, client_id: str) -> int:
        return self.db.execute(select(func.count(Budget.id)).where(Budget.client_id == client_id)).scalar_one()


class BudgetsRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_for_owner(self, owner_id: str) -> list[Budget]:
        result = self.db.execute(
            select(Budget).where(Budget.owner_id == owner_id).order_by(Budget.created_at.desc())
        )
        return list(result.unique().scalars().all())

    def get(self, owner_id: str, budget_id: str) -> Optional[Budget]:
        result = self.db.execute(select(Budget).where(Budget.id == budget_id, Budget.owner_id == owner_id))
        return result.unique().scalar_one_or_none()

    def get_by_public_uuid(self, public_uuid: str, *, for_update: bool = False) -> Optional[Budget]:
        stmt = select(Budget).where(Budget.public_uuid == public_uuid)
        if for_update:
            # joined eager load of the client can't be combined with FOR UPDATE on Postgres
            stmt = stmt.with_for_update(of=Budget)
        return self.db.execute(stmt).unique().scalar_one_or_none()

    def count_created_between(self, owner_id: str, start: datetime, end: datetime) -> int:
        result = self.db.execute(
            select(func.count(Budget.id)).where(
                Budget.owner_id == owner_id,
                Budget.created_at >= start,
                Budget.created_at < end,
            )
        )
        return result.scalar_one()

    def insert(self, budget: Budget) -> Budget:
        self.db.add(budget)
        self.db.flush()
        return budget

    def delete(self, budget: Budget) -> None:
        self.db.delete(budget)
        self.db.flush()
