"""
StatsService - read-only aggregates over the ledger store.

Every figure is recomputed from each debt's payment log rather than trusted
from the cached fields, and overdue is evaluated at the requested instant.
Each debt is read as one document, so a stats read never sees half of a
payment commit.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.client import ClientStatus
from app.models.debt import DebtStatus
from app.repositories.client_repo import ClientRepository
from app.repositories.debt_repo import DebtRepository
from app.schemas.client import ClientResponse
from app.schemas.payment import PaymentResponse
from app.schemas.stats import ClientStats, ClientSummary, DebtStats, RecentPayment, StatusBucket
from app.utils.balance import compute_debt_balance, compute_interest, days_to_pay
from app.utils.ledger_validation import ensure_utc


class StatsService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        overdue_grace: timedelta = timedelta(0),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client_repo = ClientRepository(db)
        self.debt_repo = DebtRepository(db)
        self.overdue_grace = overdue_grace
        self.clock = clock

    async def client_stats(self, client_id: str, as_of: Optional[datetime] = None) -> ClientStats:
        """Totals and counts over one client's debts. Raises NotFoundError."""
        client = await self.client_repo.get_client(client_id)
        as_of = as_of or self.clock()
        stats = ClientStats(client_id=str(client.id), as_of=as_of)
        currencies = set()

        async for debt in self.debt_repo.iter_debts({"client_id": client.id}):
            balance = compute_debt_balance(debt, as_of, self.overdue_grace)
            stats.debt_count += 1
            stats.total_principal_cents += debt.principal_cents
            stats.total_paid_cents += balance.paid_cents
            stats.total_credit_cents += balance.credit_cents
            currencies.add(debt.currency)

            if balance.status == DebtStatus.CANCELLED:
                stats.cancelled_count += 1
                continue
            stats.total_owed_cents += balance.balance_cents
            if balance.balance_cents > 0:
                stats.open_debt_count += 1
            if balance.status == DebtStatus.OVERDUE:
                stats.overdue_count += 1
                stats.total_interest_cents += compute_interest(debt, as_of, self.overdue_grace).interest_cents
            elif balance.status == DebtStatus.PAID:
                stats.paid_count += 1

        stats.currencies = sorted(currencies)
        return stats

    async def client_summary(
        self,
        client_id: str,
        as_of: Optional[datetime] = None,
        recent_limit: int = 10,
    ) -> ClientSummary:
        """
        Client profile with its stats, the latest ledger entries across all
        of its debts (newest paid_at first, reversals included) and how much
        of the credit limit is owed.
        """
        client = await self.client_repo.get_client(client_id)
        as_of = ensure_utc(as_of) if as_of else self.clock()
        stats = await self.client_stats(client_id, as_of)

        entries = []
        for debt in await self.debt_repo.list_client_debts(str(client.id)):
            for payment in debt.payments:
                if payment.paid_at <= as_of:
                    entries.append((debt, payment))
        entries.sort(key=lambda entry: entry[1].paid_at, reverse=True)

        utilization = None
        if client.credit_limit_cents > 0:
            utilization = round(stats.total_owed_cents / client.credit_limit_cents * 100, 2)

        return ClientSummary(
            client=ClientResponse.from_model(client),
            stats=stats,
            recent_payments=[
                RecentPayment(
                    debt_id=str(debt.id),
                    debt_number=debt.debt_number,
                    payment=PaymentResponse.from_model(payment),
                )
                for debt, payment in entries[:recent_limit]
            ],
            credit_utilization=utilization,
        )

    async def portfolio_stats(self, as_of: Optional[datetime] = None) -> DebtStats:
        """Totals, status breakdown, average days-to-pay and collection rate."""
        as_of = as_of or self.clock()
        stats = DebtStats(
            as_of=as_of,
            client_count=await self.client_repo.count_clients(),
            active_client_count=await self.client_repo.count_clients(ClientStatus.ACTIVE),
            debts_by_status={status.value: StatusBucket() for status in DebtStatus},
        )

        collectible_principal = 0
        collected = 0
        pay_days = []

        async for debt in self.debt_repo.iter_debts():
            balance = compute_debt_balance(debt, as_of, self.overdue_grace)
            bucket = stats.debts_by_status[balance.status.value]
            bucket.count += 1
            stats.debt_count += 1
            stats.total_principal_cents += debt.principal_cents
            stats.total_paid_cents += balance.paid_cents
            stats.total_credit_cents += balance.credit_cents

            if balance.status == DebtStatus.CANCELLED:
                continue
            bucket.owed_cents += balance.balance_cents
            stats.total_owed_cents += balance.balance_cents
            collectible_principal += debt.principal_cents
            collected += balance.paid_cents
            if balance.status == DebtStatus.OVERDUE:
                stats.overdue_count += 1
            elif balance.status == DebtStatus.PAID:
                days = days_to_pay(debt)
                if days is not None:
                    pay_days.append(days)

        if stats.debt_count:
            stats.average_principal_cents = round(stats.total_principal_cents / stats.debt_count)
        if pay_days:
            stats.average_days_to_pay = round(sum(pay_days) / len(pay_days), 2)
        if collectible_principal:
            stats.collection_rate = round(collected / collectible_principal * 100, 2)
        return stats
