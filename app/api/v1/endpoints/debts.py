from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, Query, status

from app.api.deps import (
    get_actor,
    get_debt_repository,
    get_ledger_service,
    get_reconciliation_service,
)
from app.models.debt import DebtPriority, DebtStatus
from app.repositories.debt_repo import DebtRepository
from app.schemas.debt import (
    BalanceSnapshot,
    DebtAuditResponse,
    DebtCancel,
    DebtCreate,
    DebtPage,
    DebtResponse,
    DebtUpdate,
    InterestSnapshot,
    ReconciliationResponse,
)
from app.schemas.payment import PaymentCreate, PaymentMetadata, PaymentResponse, PaymentReverse
from app.services.ledger_service import LedgerService
from app.services.reconciliation_service import PaymentReconciliationService, ReconciliationResult

router = APIRouter()


def _to_reconciliation_response(result: ReconciliationResult) -> ReconciliationResponse:
    return ReconciliationResponse(
        debt=DebtResponse.from_model(result.debt),
        payment=PaymentResponse.from_model(result.payment),
        replayed=result.replayed
    )


@router.post("", response_model=DebtResponse, status_code=status.HTTP_201_CREATED)
async def create_debt(
    debt_data: DebtCreate,
    actor: str = Depends(get_actor),
    debts: DebtRepository = Depends(get_debt_repository)
):
    """Create an open debt for an active client."""
    debt = await debts.create_debt(
        debt_data.client_id,
        debt_data.principal_cents,
        debt_data.due_date,
        debt_data.currency,
        description=debt_data.description,
        priority=debt_data.priority,
        interest_rate_bp=debt_data.interest_rate_bp,
        email_notifications=debt_data.email_notifications,
        notes=debt_data.notes,
        created_by=actor
    )
    return DebtResponse.from_model(debt)


@router.get("", response_model=DebtPage)
async def list_debts(
    debt_status: Optional[DebtStatus] = Query(None, alias="status"),
    priority: Optional[DebtPriority] = None,
    client_id: Optional[str] = None,
    overdue: bool = False,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """
    Page through debts, newest first.

    - status filters on the cached status; overdue=true selects unsettled
      debts past due regardless of it
    - search matches debt number, description or notes
    """
    return await ledger.list_debts(
        status=debt_status,
        priority=priority,
        client_id=client_id,
        overdue=overdue,
        search=search,
        page=page,
        limit=limit
    )


@router.get("/{debt_id}", response_model=DebtResponse)
async def get_debt(
    debt_id: str,
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    debt, interest = await ledger.debt_interest(debt_id)
    return DebtResponse.from_model(debt, interest)


@router.patch("/{debt_id}", response_model=DebtResponse)
async def update_debt(
    debt_id: str,
    changes: DebtUpdate,
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Edit non-financial fields; money moves only through payments and reversals."""
    debt = await ledger.update_debt(debt_id, changes)
    return DebtResponse.from_model(debt)


@router.get("/{debt_id}/interest", response_model=InterestSnapshot)
async def get_interest(
    debt_id: str,
    as_of: Optional[datetime] = None,
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Late interest accrued by an overdue debt at as_of (default now). Never part of the balance."""
    _, interest = await ledger.debt_interest(debt_id, as_of)
    return InterestSnapshot(**vars(interest))


@router.get("/{debt_id}/payments", response_model=List[PaymentResponse])
async def list_payments(
    debt_id: str,
    actor: str = Depends(get_actor),
    debts: DebtRepository = Depends(get_debt_repository)
):
    """Payment log, oldest paid_at first."""
    payments = await debts.list_payments(debt_id)
    return [PaymentResponse.from_model(payment) for payment in payments]


@router.post("/{debt_id}/payments", response_model=ReconciliationResponse)
async def apply_payment(
    debt_id: str,
    payload: PaymentCreate,
    idempotency_key: Optional[str] = Header(None),
    actor: str = Depends(get_actor),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    """
    Apply a payment to a debt.

    - Idempotency-Key header (or body field) makes retries safe
    - 409 on overpayment or exhausted version conflicts
    """
    result = await reconciliation.apply_payment(
        debt_id,
        payload.amount_cents,
        payload.paid_at or datetime.now(timezone.utc),
        PaymentMetadata(
            recorded_by=actor,
            method=payload.method,
            currency=payload.currency,
            notes=payload.notes
        ),
        idempotency_key=idempotency_key or payload.idempotency_key
    )
    return _to_reconciliation_response(result)


@router.post("/{debt_id}/payments/{payment_id}/reverse", response_model=ReconciliationResponse)
async def reverse_payment(
    debt_id: str,
    payment_id: str,
    payload: PaymentReverse,
    idempotency_key: Optional[str] = Header(None),
    actor: str = Depends(get_actor),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    """Record an offsetting entry for an earlier payment."""
    result = await reconciliation.reverse_payment(
        debt_id,
        payment_id,
        PaymentMetadata(recorded_by=actor, notes=payload.notes),
        idempotency_key=idempotency_key or payload.idempotency_key
    )
    return _to_reconciliation_response(result)


@router.post("/{debt_id}/cancel", response_model=DebtResponse)
async def cancel_debt(
    debt_id: str,
    payload: DebtCancel,
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    debt = await ledger.cancel_debt(debt_id, actor, payload.reason)
    return DebtResponse.from_model(debt)


@router.get("/{debt_id}/audit", response_model=DebtAuditResponse)
async def audit_debt(
    debt_id: str,
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Compare the cached balance/status with a replay of the payment log."""
    audit = await ledger.audit_debt(debt_id)
    return DebtAuditResponse(
        debt_id=str(audit.debt.id),
        debt_number=audit.debt.debt_number,
        status_as_of=audit.debt.status_as_of,
        cached=BalanceSnapshot(**vars(audit.cached)),
        recomputed=BalanceSnapshot(**vars(audit.recomputed)),
        consistent=audit.consistent
    )
