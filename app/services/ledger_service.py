import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.client import Client
from app.models.debt import Debt, DebtPriority, DebtStatus, TERMINAL_STATUSES
from app.repositories.client_repo import ClientRepository
from app.repositories.debt_repo import DebtRepository
from app.schemas.debt import DebtPage, DebtResponse, DebtUpdate
from app.utils.balance import (
    BalanceResult,
    InterestResult,
    compute_debt_balance,
    compute_interest,
    derive_status,
)
from app.utils.ledger_validation import (
    ConflictError,
    LedgerValidationError,
    ensure_utc,
    validate_due_date,
    validate_interest_rate,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class DebtAudit:
    debt: Debt
    cached: BalanceResult
    recomputed: BalanceResult

    @property
    def consistent(self) -> bool:
        return self.cached == self.recomputed


class LedgerService:
    """Client and debt lifecycle operations other than payments."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        overdue_grace: timedelta = timedelta(0),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        due_date_grace: timedelta = timedelta(hours=24),
    ):
        self.client_repo = ClientRepository(db)
        self.debt_repo = DebtRepository(db, due_date_grace=due_date_grace)
        self.overdue_grace = overdue_grace
        self.clock = clock

    async def archive_client(self, client_id: str) -> Client:
        """
        Archive a client that has no outstanding debt. Cancelled debts are
        written off and do not count, whatever balance they were left with.

        The archive is conditional on the client version read before the
        debt scan. A debt created during the scan bumps that version, so
        the archive fails with ConflictError instead of hiding it.
        """
        client = await self.client_repo.get_client(client_id)
        for debt in await self.debt_repo.list_client_debts(str(client.id)):
            if debt.cancelled_at is not None:
                continue
            balance = compute_debt_balance(debt, self.clock(), self.overdue_grace)
            if balance.balance_cents > 0:
                raise LedgerValidationError(
                    f"Client {client.id} has outstanding debt {debt.debt_number}"
                )

        archived = await self.client_repo.mark_archived(str(client.id), client.version)
        logger.info("Archived client %s", client.id)
        return archived

    async def list_debts(
        self,
        status: Optional[DebtStatus] = None,
        priority: Optional[DebtPriority] = None,
        client_id: Optional[str] = None,
        overdue: bool = False,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> DebtPage:
        """Filtered, paged debt listing, newest first, with late interest at now."""
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise LedgerValidationError(
                f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}"
            )
        as_of = self.clock()
        query = self.debt_repo.build_search_query(
            status=status,
            priority=priority,
            client_id=client_id,
            overdue_as_of=as_of - self.overdue_grace if overdue else None,
            search=search,
        )
        total = await self.debt_repo.count_debts(query)
        debts = await self.debt_repo.search_debts(query, skip=(page - 1) * limit, limit=limit)
        return DebtPage(
            debts=[
                DebtResponse.from_model(debt, compute_interest(debt, as_of, self.overdue_grace))
                for debt in debts
            ],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    async def debt_interest(self, debt_id: str, as_of: Optional[datetime] = None) -> Tuple[Debt, InterestResult]:
        debt = await self.debt_repo.get_debt(debt_id)
        as_of = ensure_utc(as_of) if as_of else self.clock()
        return debt, compute_interest(debt, as_of, self.overdue_grace)

    async def update_debt(self, debt_id: str, changes: DebtUpdate) -> Debt:
        """
        Edit description, priority, due date, interest rate, notification flag
        or notes. Cancelled debts are frozen.

        A new due date re-derives the cached status at now.
        """
        debt = await self.debt_repo.get_debt(debt_id)
        if debt.cancelled_at is not None:
            raise LedgerValidationError(f"Debt {debt.debt_number} is cancelled and cannot be edited")

        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return debt
        cleared = sorted(name for name, value in fields.items() if value is None and name != "notes")
        if cleared:
            raise LedgerValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")
        if "due_date" in fields:
            validate_due_date(fields["due_date"], debt.issued_at, self.debt_repo.due_date_grace)
            fields["due_date"] = ensure_utc(fields["due_date"])
        if "interest_rate_bp" in fields:
            validate_interest_rate(fields["interest_rate_bp"])

        as_of = self.clock()
        status = compute_debt_balance(debt.model_copy(update=fields), as_of, self.overdue_grace).status
        updated = await self.debt_repo.update_details(debt, fields, status, as_of)
        if updated is None:
            raise ConflictError(str(debt_id), 1)
        logger.info("Updated debt %s: %s", updated.debt_number, sorted(fields))
        return updated

    async def cancel_debt(self, debt_id: str, cancelled_by: str, reason: Optional[str] = None) -> Debt:
        """Cancel a non-terminal debt. The payment log is left as is."""
        debt = await self.debt_repo.get_debt(debt_id)
        if debt.is_terminal or debt.cancelled_at is not None:
            raise LedgerValidationError(
                f"Debt {debt.debt_number} is {debt.status.value} and cannot be cancelled"
            )

        updated = await self.debt_repo.set_cancelled(debt, cancelled_by, reason, self.clock())
        if updated is None:
            raise ConflictError(str(debt_id), 1)
        logger.info("Cancelled debt %s by %s", updated.debt_number, cancelled_by)
        return updated

    async def refresh_statuses(self, as_of: Optional[datetime] = None) -> int:
        """
        Re-derive cached status for non-terminal debts past their due date.

        Debts written concurrently are skipped; the writer already refreshed
        them. Returns the number of debts updated.
        """
        as_of = as_of or self.clock()
        query = {
            "status": {"$nin": [s.value for s in TERMINAL_STATUSES]},
            "due_date": {"$lt": as_of - self.overdue_grace},
        }
        updated_count = 0
        async for debt in self.debt_repo.iter_debts(query):
            status = derive_status(
                debt.principal_cents, debt.balance_cents, debt.due_date,
                as_of, self.overdue_grace, debt.cancelled_at
            )
            if status == debt.status:
                continue
            if await self.debt_repo.set_cached_status(debt, status, as_of) is not None:
                updated_count += 1

        logger.info("Refreshed status of %d debts as of %s", updated_count, as_of.isoformat())
        return updated_count

    async def audit_debt(self, debt_id: str) -> DebtAudit:
        """Recompute a debt from its payment log and compare with the cache."""
        debt = await self.debt_repo.get_debt(debt_id)
        cached = BalanceResult(
            paid_cents=debt.paid_cents,
            balance_cents=debt.balance_cents,
            credit_cents=debt.credit_cents,
            status=debt.status,
        )
        recomputed = compute_debt_balance(debt, debt.status_as_of, self.overdue_grace)
        audit = DebtAudit(debt=debt, cached=cached, recomputed=recomputed)
        if not audit.consistent:
            logger.error(
                "Cache mismatch on %s: cached %s, recomputed %s",
                debt.debt_number, cached, recomputed
            )
        return audit
