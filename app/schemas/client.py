from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from app.models.client import Client, ClientStatus, ClientType


class ClientCreate(BaseModel):
    """Request body to create a client."""
    name: str = Field(..., min_length=1, max_length=200)
    client_type: ClientType = ClientType.INDIVIDUAL
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    tax_id: Optional[str] = None
    notes: Optional[str] = None
    payment_terms_days: int = Field(30, ge=0)
    credit_limit_cents: int = Field(0, ge=0)


class ClientUpdate(BaseModel):
    """
    Partial profile update. Only fields that are set are written.

    Archiving goes through its own operation, so status here is limited
    to active/inactive.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    client_type: Optional[ClientType] = None
    status: Optional[ClientStatus] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    tax_id: Optional[str] = None
    notes: Optional[str] = None
    payment_terms_days: Optional[int] = Field(None, ge=0)
    credit_limit_cents: Optional[int] = Field(None, ge=0)


class ClientResponse(BaseModel):
    id: str
    name: str
    client_type: ClientType
    status: ClientStatus
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    tax_id: Optional[str] = None
    notes: Optional[str] = None
    payment_terms_days: int
    credit_limit_cents: int
    version: int
    created_at: datetime
    updated_at: datetime
    archived_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, client: Client) -> "ClientResponse":
        return cls(
            id=str(client.id),
            name=client.name,
            client_type=client.client_type,
            status=client.status,
            email=client.email,
            phone=client.phone,
            address=client.address,
            contact_person=client.contact_person,
            tax_id=client.tax_id,
            notes=client.notes,
            payment_terms_days=client.payment_terms_days,
            credit_limit_cents=client.credit_limit_cents,
            version=client.version,
            created_at=client.created_at,
            updated_at=client.updated_at,
            archived_at=client.archived_at,
        )


class ClientPage(BaseModel):
    clients: List[ClientResponse]
    total: int
    page: int
    limit: int
    total_pages: int
