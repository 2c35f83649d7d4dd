"""
Balance calculation utilities.

Pure functions: no I/O, no clock reads. The evaluation instant is always
passed in, so the same inputs give the same result whether used for an
incremental update or for a full recomputation audit.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from app.models.debt import Debt, DebtStatus, Payment
from app.utils.ledger_validation import LedgerInvariantError, ensure_utc


@dataclass(frozen=True)
class BalanceResult:
    paid_cents: int
    balance_cents: int
    credit_cents: int
    status: DebtStatus


def derive_status(
    principal_cents: int,
    balance_cents: int,
    due_date: datetime,
    as_of: datetime,
    overdue_grace: timedelta = timedelta(0),
    cancelled_at: Optional[datetime] = None,
) -> DebtStatus:
    """
    Status rules, first match wins:
    - cancelled: debt was cancelled
    - paid: balance == 0
    - overdue: balance > 0 and as_of > due_date + grace
    - partially_paid: 0 < balance < principal
    - open: otherwise
    """
    if cancelled_at is not None:
        return DebtStatus.CANCELLED
    if balance_cents == 0:
        return DebtStatus.PAID
    if ensure_utc(as_of) > ensure_utc(due_date) + overdue_grace:
        return DebtStatus.OVERDUE
    if balance_cents < principal_cents:
        return DebtStatus.PARTIALLY_PAID
    return DebtStatus.OPEN


def compute_balance(
    principal_cents: int,
    payments: Iterable[Payment],
    due_date: datetime,
    as_of: datetime,
    overdue_grace: timedelta = timedelta(0),
    cancelled_at: Optional[datetime] = None,
) -> BalanceResult:
    """
    Derive (paid, balance, credit, status) from a payment log.

    Raises LedgerInvariantError if the log pays more than the principal or
    reverses more than was paid.
    """
    paid = 0
    credit = 0
    for payment in payments:
        paid += payment.amount_cents
        credit += payment.credit_cents

    balance = principal_cents - paid
    if balance < 0:
        raise LedgerInvariantError(
            f"Payments ({paid} cents) exceed principal ({principal_cents} cents)"
        )
    if balance > principal_cents:
        raise LedgerInvariantError(
            f"Reversals exceed payments: net paid {paid} cents"
        )

    status = derive_status(
        principal_cents, balance, due_date, as_of, overdue_grace, cancelled_at
    )
    return BalanceResult(
        paid_cents=paid,
        balance_cents=balance,
        credit_cents=credit,
        status=status,
    )


def compute_debt_balance(
    debt: Debt,
    as_of: datetime,
    overdue_grace: timedelta = timedelta(0),
) -> BalanceResult:
    """Recompute a stored debt from its full payment log."""
    return compute_balance(
        debt.principal_cents,
        debt.payments,
        debt.due_date,
        as_of,
        overdue_grace,
        debt.cancelled_at,
    )


def project_payment(
    debt: Debt,
    payment: Payment,
    as_of: datetime,
    overdue_grace: timedelta = timedelta(0),
) -> BalanceResult:
    """Prospective state of a debt once one more entry is appended."""
    return compute_balance(
        debt.principal_cents,
        [*debt.payments, payment],
        debt.due_date,
        as_of,
        overdue_grace,
        debt.cancelled_at,
    )


def days_to_pay(debt: Debt) -> Optional[float]:
    """
    Days from issue to the payment that first cleared the balance.

    Entries are replayed in paid_at order. Returns None if the running
    balance never reached zero.
    """
    running = debt.principal_cents
    for payment in sorted(debt.payments, key=lambda p: p.paid_at):
        running -= payment.amount_cents
        if running == 0:
            elapsed = ensure_utc(payment.paid_at) - ensure_utc(debt.issued_at)
            return max(elapsed.total_seconds(), 0) / 86400
    return None


@dataclass(frozen=True)
class InterestResult:
    months_overdue: int
    rate_bp: int
    interest_cents: int
    total_with_interest_cents: int


def months_overdue(due_date: datetime, as_of: datetime) -> int:
    """Started 30-day periods since the due date; 0 when not yet due."""
    elapsed = ensure_utc(as_of) - ensure_utc(due_date)
    if elapsed <= timedelta(0):
        return 0
    days = math.ceil(elapsed.total_seconds() / 86400)
    return math.ceil(days / 30)


def accrued_interest(balance_cents: int, rate_bp: int, months: int) -> int:
    """Simple monthly interest on the outstanding balance, rounded half up to a cent."""
    if balance_cents <= 0 or rate_bp <= 0 or months <= 0:
        return 0
    return (balance_cents * rate_bp * months + 5000) // 10000


def compute_interest(
    debt: Debt,
    as_of: datetime,
    overdue_grace: timedelta = timedelta(0),
) -> InterestResult:
    """
    Late interest owed on a debt at `as_of`.

    A read-only figure: it is never written to the payment log and never
    changes balance_cents. Only overdue debts accrue; months are counted
    from the due date itself.
    """
    balance = compute_debt_balance(debt, as_of, overdue_grace)
    months = 0
    interest = 0
    if balance.status == DebtStatus.OVERDUE:
        months = months_overdue(debt.due_date, as_of)
        interest = accrued_interest(balance.balance_cents, debt.interest_rate_bp, months)
    return InterestResult(
        months_overdue=months,
        rate_bp=debt.interest_rate_bp,
        interest_cents=interest,
        total_with_interest_cents=balance.balance_cents + interest,
    )
