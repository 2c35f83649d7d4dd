"""
Debt model - amounts owed by a client, reduced over time by payments.

Design principles:
- One document per debt; the payment log is embedded so a debt and its
  payments are written atomically
- Payments are append-only and never edited; corrections are reversals
- balance/status/paid are a cache, always reconstructable from the log
- All amounts in integer cents
- version is bumped on every write (optimistic locking)
"""

from typing import List, Optional
from datetime import datetime
from enum import Enum

from pydantic import Field

from app.models.base import MongoModel, PyObjectId, UTCModel, _utcnow


class DebtStatus(str, Enum):
    OPEN = "open"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({DebtStatus.PAID, DebtStatus.CANCELLED})


class DebtPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    OTHER = "other"


class PaymentKind(str, Enum):
    PAYMENT = "payment"
    REVERSAL = "reversal"


class Payment(UTCModel):
    """
    One ledger entry against a debt.

    amount_cents is positive for payments and negative for reversals.
    credit_cents holds any overpayment excess recorded under the credit policy;
    it is never part of amount_cents.
    """
    id: PyObjectId = Field(default_factory=PyObjectId, alias="_id")
    kind: PaymentKind = PaymentKind.PAYMENT
    amount_cents: int
    credit_cents: int = 0
    paid_at: datetime
    method: PaymentMethod = PaymentMethod.OTHER
    recorded_by: str
    recorded_at: datetime = Field(default_factory=_utcnow)
    idempotency_key: Optional[str] = None
    reverses_payment_id: Optional[PyObjectId] = None
    notes: Optional[str] = None


class Debt(MongoModel):
    """
    Invariants:
    - 0 <= paid_cents <= principal_cents
    - balance_cents == principal_cents - sum(p.amount_cents for p in payments)
    - status is derived from balance, due date and cancellation
    """
    debt_number: str
    client_id: PyObjectId
    description: str = ""

    # Financial
    principal_cents: int
    currency: str

    # Cache, rebuilt from payments on every write
    paid_cents: int = 0
    balance_cents: int
    credit_cents: int = 0
    status: DebtStatus = DebtStatus.OPEN
    status_as_of: datetime = Field(default_factory=_utcnow)

    priority: DebtPriority = DebtPriority.MEDIUM
    interest_rate_bp: int = 0  # monthly late interest, basis points; never part of the balance
    issued_at: datetime = Field(default_factory=_utcnow)
    due_date: datetime
    email_notifications: bool = True
    notes: Optional[str] = None
    created_by: Optional[str] = None

    # Cancellation
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None

    payments: List[Payment] = []
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def find_payment(self, payment_id: str) -> Optional[Payment]:
        for payment in self.payments:
            if str(payment.id) == str(payment_id):
                return payment
        return None

    def find_by_idempotency_key(self, key: str) -> Optional[Payment]:
        for payment in self.payments:
            if payment.idempotency_key == key:
                return payment
        return None

    def is_reversed(self, payment_id: str) -> bool:
        return any(
            p.kind == PaymentKind.REVERSAL and str(p.reverses_payment_id) == str(payment_id)
            for p in self.payments
        )
