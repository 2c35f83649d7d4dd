from typing import Optional
from datetime import datetime
from enum import Enum

from app.models.base import MongoModel


class ClientType(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    GOVERNMENT = "government"


class ClientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class Client(MongoModel):
    name: str
    client_type: ClientType = ClientType.INDIVIDUAL
    status: ClientStatus = ClientStatus.ACTIVE

    # Contact
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None  # for companies
    tax_id: Optional[str] = None

    notes: Optional[str] = None
    payment_terms_days: int = 30
    credit_limit_cents: int = 0  # 0 means no limit

    created_by: Optional[str] = None
    archived_at: Optional[datetime] = None

    # Bumped by every debt creation and profile edit; archiving is checked against it
    version: int = 1

    @property
    def is_archived(self) -> bool:
        return self.status == ClientStatus.ARCHIVED
