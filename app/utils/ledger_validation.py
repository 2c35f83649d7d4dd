"""Ledger error taxonomy and input validation utilities."""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors surfaced to callers."""
    kind = "ledger_error"


class LedgerValidationError(LedgerError):
    """Malformed or out-of-range input."""
    kind = "validation_error"


class CurrencyMismatchError(LedgerValidationError):
    """Payment currency differs from the debt currency."""
    kind = "currency_mismatch"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Payment currency {received} does not match debt currency {expected}"
        )


class NotFoundError(LedgerError):
    """Unknown client, debt or payment."""
    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class OverpaymentError(LedgerError):
    """Payment amount exceeds the remaining balance."""
    kind = "overpayment"

    def __init__(self, amount_cents: int, balance_cents: int):
        self.amount_cents = amount_cents
        self.balance_cents = balance_cents
        super().__init__(
            f"Payment of {amount_cents} cents exceeds remaining balance of {balance_cents} cents"
        )


class ConflictError(LedgerError):
    """Concurrent modification detected. Safe to retry."""
    kind = "conflict"

    def __init__(self, entity_id: str, attempts: int, entity: str = "Debt"):
        self.entity = entity
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"{entity} {entity_id} was modified concurrently ({attempts} attempts)"
        )


class LedgerInvariantError(LedgerError):
    """A computed ledger state violates an invariant. Always a defect."""
    kind = "invariant_violation"


_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def normalize_currency(currency: Optional[str]) -> str:
    """
    Validate an ISO-4217 style currency code.

    Rules:
    - must be present
    - three letters, returned upper case
    """
    if currency is None or not currency.strip():
        raise LedgerValidationError("Currency is required")
    code = currency.strip().upper()
    if not _CURRENCY_RE.match(code):
        raise LedgerValidationError(f"Invalid currency code: {currency!r}")
    return code


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage_datetime(value: datetime) -> datetime:
    """MongoDB stores naive UTC; strip tzinfo after converting."""
    return ensure_utc(value).replace(tzinfo=None)


def validate_principal(principal_cents: int) -> None:
    if isinstance(principal_cents, bool) or not isinstance(principal_cents, int):
        raise LedgerValidationError("Principal must be an integer number of cents")
    if principal_cents <= 0:
        raise LedgerValidationError(
            f"Principal must be positive: {principal_cents}"
        )


def validate_due_date(due_date: datetime, created_at: datetime, grace: timedelta) -> None:
    """Due date may lie in the past by at most the grace window."""
    if due_date is None:
        raise LedgerValidationError("Due date is required")
    if ensure_utc(due_date) < ensure_utc(created_at) - grace:
        raise LedgerValidationError(
            f"Due date {due_date.isoformat()} is earlier than creation time beyond the allowed grace"
        )


def validate_payment_amount(amount_cents: int) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise LedgerValidationError("Payment amount must be an integer number of cents")
    if amount_cents <= 0:
        raise LedgerValidationError(
            f"Payment amount must be positive: {amount_cents}"
        )


def validate_interest_rate(rate_bp: int) -> None:
    """Monthly late-interest rate in basis points, 0 to 10000 (0% to 100%)."""
    if isinstance(rate_bp, bool) or not isinstance(rate_bp, int):
        raise LedgerValidationError("Interest rate must be an integer number of basis points")
    if rate_bp < 0 or rate_bp > 10000:
        raise LedgerValidationError(f"Interest rate out of range: {rate_bp}")
