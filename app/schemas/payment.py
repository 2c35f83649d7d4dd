from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.models.debt import Payment, PaymentKind, PaymentMethod


class PaymentMetadata(BaseModel):
    """Who recorded a payment and how it was made."""
    recorded_by: str
    method: PaymentMethod = PaymentMethod.OTHER
    currency: Optional[str] = None  # checked against the debt when given
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    """Request body to apply a payment to a debt."""
    amount_cents: int
    paid_at: Optional[datetime] = None
    method: PaymentMethod = PaymentMethod.OTHER
    currency: Optional[str] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=200)


class PaymentReverse(BaseModel):
    """Request body to reverse an earlier payment."""
    notes: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=200)


class PaymentResponse(BaseModel):
    id: str
    kind: PaymentKind
    amount_cents: int
    credit_cents: int
    paid_at: datetime
    method: PaymentMethod
    recorded_by: str
    recorded_at: datetime
    idempotency_key: Optional[str] = None
    reverses_payment_id: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_model(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            id=str(payment.id),
            kind=payment.kind,
            amount_cents=payment.amount_cents,
            credit_cents=payment.credit_cents,
            paid_at=payment.paid_at,
            method=payment.method,
            recorded_by=payment.recorded_by,
            recorded_at=payment.recorded_at,
            idempotency_key=payment.idempotency_key,
            reverses_payment_id=str(payment.reverses_payment_id) if payment.reverses_payment_id else None,
            notes=payment.notes,
        )
