from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_clients_service, get_current_account
from app.models.billing import UserAccount
from app.services.budgets_service import ClientsService

router = APIRouter(prefix="/api/clients", tags=["clients"])


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)


class ClientUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)


class ClientOut(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=list[ClientOut])
def list_clients(acct: UserAccount = Depends(get_current_account), svc: ClientsService = Depends(get_clients_service)):
    return svc.list_clients(acct.owner_id)


@router.post("", response_model=ClientOut, status_code=201)
def create_client(body: ClientCreate, acct: UserAccount = Depends(get_current_account), svc: ClientsService = Depends(get_clients_service)):
    return svc.create_client(acct.owner_id, name=body.name, email=body.email, phone=body.phone)


@router.put("/{client_id}", response_model=ClientOut)
def update_client(client_id: str, body: ClientUpdate, acct: UserAccount = Depends(get_current_account), svc: ClientsService = Depends(get_clients_service)):
    return svc.update_client(acct.owner_id, client_id, name=body.name, email=body.email, phone=body.phone)


@router.delete("/{client_id}")
def delete_client(client_id: str, acct: UserAccount = Depends(get_current_account), svc: ClientsService = Depends(get_clients_service)):
    svc.delete_client(acct.owner_id, client_id)
    return {"deleted": True}
