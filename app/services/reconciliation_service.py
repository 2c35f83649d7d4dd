"""
PaymentReconciliationService - validates and applies payments to a debt.

Each attempt reads the debt aggregate, validates against the balance
recomputed from its payment log, and commits with a compare-and-swap on the
debt version. A lost race re-runs the whole attempt against fresh state, up
to `max_retries` times, then surfaces ConflictError. Failed attempts write
nothing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.debt import Debt, Payment, PaymentKind
from app.repositories.debt_repo import DebtRepository
from app.schemas.payment import PaymentMetadata
from app.utils.balance import compute_debt_balance, project_payment
from app.utils.ledger_validation import (
    ConflictError,
    CurrencyMismatchError,
    LedgerValidationError,
    NotFoundError,
    OverpaymentError,
    ensure_utc,
    normalize_currency,
    validate_payment_amount,
)

logger = logging.getLogger(__name__)

OVERPAYMENT_REJECT = "reject"
OVERPAYMENT_CREDIT = "credit"

EntryBuilder = Callable[[Debt, datetime], Payment]


@dataclass(frozen=True)
class ReconciliationResult:
    debt: Debt
    payment: Payment
    replayed: bool = False


class PaymentReconciliationService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        overpayment_policy: str = OVERPAYMENT_REJECT,
        max_retries: int = 3,
        overdue_grace: timedelta = timedelta(0),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        debt_repo: Optional[DebtRepository] = None,
    ):
        if overpayment_policy not in (OVERPAYMENT_REJECT, OVERPAYMENT_CREDIT):
            raise ValueError(f"Unknown overpayment policy: {overpayment_policy}")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.debt_repo = debt_repo or DebtRepository(db)
        self.overpayment_policy = overpayment_policy
        self.max_retries = max_retries
        self.overdue_grace = overdue_grace
        self.clock = clock

    async def apply_payment(
        self,
        debt_id: str,
        amount_cents: int,
        paid_at: datetime,
        metadata: PaymentMetadata,
        idempotency_key: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Apply one payment to a debt.

        Raises:
        - LedgerValidationError: amount <= 0, missing paid_at, cancelled debt
        - CurrencyMismatchError: metadata.currency differs from the debt's
        - NotFoundError: unknown debt
        - OverpaymentError: amount exceeds the balance (reject policy)
        - ConflictError: version conflicts outlasted the retry budget
        """
        validate_payment_amount(amount_cents)
        if paid_at is None:
            raise LedgerValidationError("paid_at is required")
        paid_at = ensure_utc(paid_at)
        currency = normalize_currency(metadata.currency) if metadata.currency else None

        def build(debt: Debt, as_of: datetime) -> Payment:
            if currency is not None and currency != debt.currency:
                raise CurrencyMismatchError(debt.currency, currency)
            if debt.cancelled_at is not None:
                raise LedgerValidationError(f"Debt {debt.debt_number} is cancelled")

            current = compute_debt_balance(debt, as_of, self.overdue_grace)
            applied, credit = amount_cents, 0
            if amount_cents > current.balance_cents:
                if self.overpayment_policy == OVERPAYMENT_CREDIT and current.balance_cents > 0:
                    applied = current.balance_cents
                    credit = amount_cents - current.balance_cents
                else:
                    logger.info(
                        "Rejected overpayment on %s: %d > %d",
                        debt.debt_number, amount_cents, current.balance_cents
                    )
                    raise OverpaymentError(amount_cents, current.balance_cents)

            return Payment(
                kind=PaymentKind.PAYMENT,
                amount_cents=applied,
                credit_cents=credit,
                paid_at=paid_at,
                method=metadata.method,
                recorded_by=metadata.recorded_by,
                recorded_at=as_of,
                idempotency_key=idempotency_key,
                notes=metadata.notes,
            )

        result = await self._commit(debt_id, PaymentKind.PAYMENT, build, idempotency_key)
        if result.replayed and result.payment.amount_cents + result.payment.credit_cents != amount_cents:
            logger.warning(
                "Idempotency key %r replayed on %s with a different amount (%d vs %d)",
                idempotency_key, result.debt.debt_number,
                amount_cents, result.payment.amount_cents + result.payment.credit_cents
            )
        return result

    async def reverse_payment(
        self,
        debt_id: str,
        payment_id: str,
        metadata: PaymentMetadata,
        idempotency_key: Optional[str] = None,
        reversed_at: Optional[datetime] = None,
    ) -> ReconciliationResult:
        """
        Append an entry offsetting one earlier payment.

        Only non-terminal debts accept reversals; a payment can be reversed once.
        """
        def build(debt: Debt, as_of: datetime) -> Payment:
            if debt.is_terminal or debt.cancelled_at is not None:
                raise LedgerValidationError(
                    f"Debt {debt.debt_number} is {debt.status.value} and cannot be corrected"
                )
            target = debt.find_payment(payment_id)
            if target is None:
                raise NotFoundError("Payment", str(payment_id))
            if target.kind == PaymentKind.REVERSAL:
                raise LedgerValidationError("A reversal cannot itself be reversed")
            if debt.is_reversed(str(target.id)):
                raise LedgerValidationError(f"Payment {target.id} is already reversed")

            return Payment(
                kind=PaymentKind.REVERSAL,
                amount_cents=-target.amount_cents,
                credit_cents=-target.credit_cents,
                paid_at=ensure_utc(reversed_at) if reversed_at else as_of,
                method=target.method,
                recorded_by=metadata.recorded_by,
                recorded_at=as_of,
                idempotency_key=idempotency_key,
                reverses_payment_id=target.id,
                notes=metadata.notes,
            )

        result = await self._commit(debt_id, PaymentKind.REVERSAL, build, idempotency_key)
        if result.replayed and str(result.payment.reverses_payment_id) != str(payment_id):
            raise LedgerValidationError(
                f"Idempotency key {idempotency_key!r} already reversed payment "
                f"{result.payment.reverses_payment_id}"
            )
        if not result.replayed:
            logger.info(
                "Reversed payment %s on %s (balance now %d)",
                payment_id, result.debt.debt_number, result.debt.balance_cents
            )
        return result

    async def _commit(
        self,
        debt_id: str,
        kind: PaymentKind,
        build: EntryBuilder,
        idempotency_key: Optional[str],
    ) -> ReconciliationResult:
        """Keys are per debt and per entry kind; reusing one for the other kind is an error."""
        attempts = 0
        while True:
            attempts += 1
            debt = await self.debt_repo.get_debt(debt_id)

            if idempotency_key:
                prior = debt.find_by_idempotency_key(idempotency_key)
                if prior is not None:
                    if prior.kind != kind:
                        raise LedgerValidationError(
                            f"Idempotency key {idempotency_key!r} was already used "
                            f"for a {prior.kind.value} on {debt.debt_number}"
                        )
                    logger.info(
                        "Replayed idempotency key %r on %s", idempotency_key, debt.debt_number
                    )
                    return ReconciliationResult(debt=debt, payment=prior, replayed=True)

            as_of = self.clock()
            entry = build(debt, as_of)
            projected = project_payment(debt, entry, as_of, self.overdue_grace)

            updated = await self.debt_repo.append_payment(debt, entry, projected, as_of)
            if updated is not None:
                stored = updated.find_payment(str(entry.id))
                logger.info(
                    "Applied %s of %d to %s: balance %d, status %s",
                    entry.kind.value, entry.amount_cents, updated.debt_number,
                    updated.balance_cents, updated.status.value
                )
                return ReconciliationResult(debt=updated, payment=stored)

            if attempts > self.max_retries:
                logger.error(
                    "Giving up on %s after %d version conflicts", debt.debt_number, attempts
                )
                raise ConflictError(str(debt_id), attempts)
            logger.warning(
                "Version conflict on %s (attempt %d), retrying", debt.debt_number, attempts
            )
