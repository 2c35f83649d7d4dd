from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from app.models.debt import Debt, DebtPriority, DebtStatus
from app.schemas.payment import PaymentResponse
from app.utils.balance import InterestResult


class DebtCreate(BaseModel):
    """Request body to create a debt."""
    client_id: str
    principal_cents: int
    currency: Optional[str] = None
    due_date: datetime
    description: str = ""
    priority: DebtPriority = DebtPriority.MEDIUM
    interest_rate_bp: int = 0
    email_notifications: bool = True
    notes: Optional[str] = None


class DebtUpdate(BaseModel):
    """
    Partial edit of a debt's non-financial fields.

    Principal, currency and the payment log are not editable; corrections
    to money go through reversals.
    """
    description: Optional[str] = None
    priority: Optional[DebtPriority] = None
    due_date: Optional[datetime] = None
    interest_rate_bp: Optional[int] = None
    email_notifications: Optional[bool] = None
    notes: Optional[str] = None


class DebtCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class InterestSnapshot(BaseModel):
    months_overdue: int
    rate_bp: int
    interest_cents: int
    total_with_interest_cents: int


class DebtResponse(BaseModel):
    id: str
    debt_number: str
    client_id: str
    description: str
    principal_cents: int
    currency: str
    paid_cents: int
    balance_cents: int
    credit_cents: int
    status: DebtStatus
    priority: DebtPriority
    interest_rate_bp: int
    issued_at: datetime
    due_date: datetime
    email_notifications: bool
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    payment_count: int
    version: int
    updated_at: datetime
    interest: Optional[InterestSnapshot] = None

    @classmethod
    def from_model(cls, debt: Debt, interest: Optional[InterestResult] = None) -> "DebtResponse":
        return cls(
            id=str(debt.id),
            debt_number=debt.debt_number,
            client_id=str(debt.client_id),
            description=debt.description,
            principal_cents=debt.principal_cents,
            currency=debt.currency,
            paid_cents=debt.paid_cents,
            balance_cents=debt.balance_cents,
            credit_cents=debt.credit_cents,
            status=debt.status,
            priority=debt.priority,
            interest_rate_bp=debt.interest_rate_bp,
            issued_at=debt.issued_at,
            due_date=debt.due_date,
            email_notifications=debt.email_notifications,
            cancelled_at=debt.cancelled_at,
            cancel_reason=debt.cancel_reason,
            payment_count=len(debt.payments),
            version=debt.version,
            updated_at=debt.updated_at,
            interest=InterestSnapshot(**vars(interest)) if interest else None,
        )


class DebtPage(BaseModel):
    debts: List[DebtResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class ReconciliationResponse(BaseModel):
    """Result of applying or reversing a payment."""
    debt: DebtResponse
    payment: PaymentResponse
    replayed: bool


class BalanceSnapshot(BaseModel):
    paid_cents: int
    balance_cents: int
    credit_cents: int
    status: DebtStatus


class DebtAuditResponse(BaseModel):
    debt_id: str
    debt_number: str
    status_as_of: datetime
    cached: BalanceSnapshot
    recomputed: BalanceSnapshot
    consistent: bool
