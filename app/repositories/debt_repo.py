"""
DebtRepository - the ledger store for debts and their payment logs.

Storage layout:
- one document per debt in `debts`, with the payment log embedded as an
  append-only array, so a payment and the cached balance/status it produces
  are written in a single atomic document update
- every write is a compare-and-swap on `version`; a lost race returns None
  and the caller decides whether to retry
- `counters` holds the debt number sequence
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.models.base import parse_object_id, to_mongo
from app.models.client import ClientStatus
from app.models.debt import Debt, DebtPriority, DebtStatus, Payment, TERMINAL_STATUSES
from app.repositories.client_repo import ClientRepository
from app.utils.balance import BalanceResult
from app.utils.ledger_validation import (
    LedgerValidationError,
    NotFoundError,
    normalize_currency,
    validate_due_date,
    validate_interest_rate,
    validate_principal,
)

logger = logging.getLogger(__name__)

DEBT_NUMBER_COUNTER = "debt_number"


class DebtRepository:
    """Repository for debts and their embedded payment logs."""

    def __init__(self, db: AsyncIOMotorDatabase, due_date_grace: timedelta = timedelta(hours=24)):
        self.db = db
        self.collection = db["debts"]
        self.counters = db["counters"]
        self.due_date_grace = due_date_grace

    async def create_debt(
        self,
        client_id: str,
        principal_cents: int,
        due_date: datetime,
        currency: Optional[str],
        *,
        description: str = "",
        priority: DebtPriority = DebtPriority.MEDIUM,
        interest_rate_bp: int = 0,
        email_notifications: bool = True,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Debt:
        """
        Create an open debt with balance == principal.

        Raises:
        - LedgerValidationError: principal <= 0, missing/invalid currency,
          due date too far in the past, bad interest rate, archived client
        - NotFoundError: unknown client

        The client version is bumped after the insert; if the client was
        archived in between, the new debt is removed again.
        """
        now = now or datetime.now(timezone.utc)
        validate_principal(principal_cents)
        currency_code = normalize_currency(currency)
        validate_due_date(due_date, now, self.due_date_grace)
        validate_interest_rate(interest_rate_bp)

        clients = ClientRepository(self.db)
        client = await clients.get_client(client_id)
        if client.status == ClientStatus.ARCHIVED:
            raise LedgerValidationError(f"Cannot create a debt for archived client {client.id}")

        debt = Debt(
            debt_number=await self._next_debt_number(),
            client_id=client.id,
            description=description,
            principal_cents=principal_cents,
            currency=currency_code,
            balance_cents=principal_cents,
            status=DebtStatus.OPEN,
            status_as_of=now,
            priority=priority,
            interest_rate_bp=interest_rate_bp,
            issued_at=now,
            due_date=due_date,
            email_notifications=email_notifications,
            notes=notes,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        await self.collection.insert_one(debt.to_document())
        if await clients.claim_for_new_debt(str(client.id)) is None:
            await self.collection.delete_one({"_id": debt.id, "version": debt.version})
            logger.warning("Client %s was archived while %s was created", client.id, debt.debt_number)
            raise LedgerValidationError(f"Cannot create a debt for archived client {client.id}")
        logger.info(
            "Created debt %s for client %s: %d %s due %s",
            debt.debt_number, client.id, principal_cents, currency_code, debt.due_date.isoformat()
        )
        # Re-read so callers see exactly what was stored
        return await self.get_debt(str(debt.id))

    async def get_debt(self, debt_id: str) -> Debt:
        """Get a debt snapshot (with its payment log). Raises NotFoundError."""
        oid = parse_object_id(debt_id, "Debt")
        doc = await self.collection.find_one({"_id": oid})
        if not doc:
            raise NotFoundError("Debt", str(debt_id))
        return Debt(**doc)

    async def list_payments(self, debt_id: str) -> List[Payment]:
        """Payment log ordered by paid_at ascending; ties keep append order."""
        debt = await self.get_debt(debt_id)
        return sorted(debt.payments, key=lambda p: p.paid_at)

    async def list_client_debts(self, client_id: str) -> List[Debt]:
        """All debts of a client, earliest due first."""
        oid = parse_object_id(client_id, "Client")
        docs = await self.collection.find({"client_id": oid}).sort("due_date", 1).to_list(None)
        return [Debt(**doc) for doc in docs]

    async def iter_debts(self, query: Optional[Dict[str, Any]] = None) -> AsyncIterator[Debt]:
        """Stream debts matching a raw query, one document at a time."""
        cursor = self.collection.find(to_mongo(query or {})).sort("due_date", 1)
        async for doc in cursor:
            yield Debt(**doc)

    async def search_debts(
        self,
        query: Dict[str, Any],
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Debt]:
        """One page of debts matching a filter built by `build_search_query`, newest first."""
        cursor = self.collection.find(query).sort([("created_at", -1), ("debt_number", -1)])
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(None)
        return [Debt(**doc) for doc in docs]

    async def count_debts(self, query: Dict[str, Any]) -> int:
        return await self.collection.count_documents(query)

    @staticmethod
    def build_search_query(
        status: Optional[DebtStatus] = None,
        priority: Optional[DebtPriority] = None,
        client_id: Optional[str] = None,
        overdue_as_of: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Filter for the debt listing.

        - status matches the cached status
        - overdue_as_of selects unsettled debts due before that instant,
          whatever their cached status says
        - search is a case-insensitive substring of number, description or notes
        """
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = DebtStatus(status).value
        if priority is not None:
            query["priority"] = DebtPriority(priority).value
        if client_id is not None:
            query["client_id"] = parse_object_id(client_id, "Client")
        if overdue_as_of is not None:
            query["due_date"] = {"$lt": to_mongo(overdue_as_of)}
            query["balance_cents"] = {"$gt": 0}
            if status is None:
                query["status"] = {"$nin": [s.value for s in TERMINAL_STATUSES]}
        if search:
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            query["$or"] = [
                {"debt_number": pattern},
                {"description": pattern},
                {"notes": pattern},
            ]
        return query

    async def append_payment(
        self,
        debt: Debt,
        payment: Payment,
        balance: BalanceResult,
        as_of: datetime,
    ) -> Optional[Debt]:
        """
        Append one entry and refresh the cache, if nobody wrote since `debt` was read.

        Only the reconciliation service calls this. Returns the updated debt,
        or None when the version check fails (nothing is written).
        """
        result = await self.collection.find_one_and_update(
            {"_id": debt.id, "version": debt.version},
            {
                "$push": {"payments": to_mongo(payment.model_dump(by_alias=True))},
                "$set": to_mongo({
                    "paid_cents": balance.paid_cents,
                    "balance_cents": balance.balance_cents,
                    "credit_cents": balance.credit_cents,
                    "status": balance.status,
                    "status_as_of": as_of,
                    "updated_at": as_of
                }),
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Debt(**result)
        return None

    async def set_cancelled(
        self,
        debt: Debt,
        cancelled_by: str,
        reason: Optional[str],
        as_of: datetime,
    ) -> Optional[Debt]:
        """Version-checked cancel. Returns None on a lost race."""
        result = await self.collection.find_one_and_update(
            {"_id": debt.id, "version": debt.version},
            {
                "$set": to_mongo({
                    "status": DebtStatus.CANCELLED,
                    "status_as_of": as_of,
                    "cancelled_at": as_of,
                    "cancelled_by": cancelled_by,
                    "cancel_reason": reason,
                    "updated_at": as_of
                }),
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Debt(**result)
        return None

    async def set_cached_status(
        self,
        debt: Debt,
        status: DebtStatus,
        as_of: datetime,
    ) -> Optional[Debt]:
        """Version-checked status cache refresh. Returns None on a lost race."""
        result = await self.collection.find_one_and_update(
            {"_id": debt.id, "version": debt.version},
            {
                "$set": to_mongo({
                    "status": status,
                    "status_as_of": as_of,
                    "updated_at": as_of
                }),
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Debt(**result)
        return None

    async def update_details(
        self,
        debt: Debt,
        fields: Dict[str, Any],
        status: DebtStatus,
        as_of: datetime,
    ) -> Optional[Debt]:
        """Version-checked edit of non-financial fields. Returns None on a lost race."""
        result = await self.collection.find_one_and_update(
            {"_id": debt.id, "version": debt.version},
            {
                "$set": to_mongo({
                    **fields,
                    "status": status,
                    "status_as_of": as_of,
                    "updated_at": as_of
                }),
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Debt(**result)
        return None

    # ===== PRIVATE HELPERS =====

    async def _next_debt_number(self) -> str:
        """Allocate DEBT-000001, DEBT-000002, ... from an atomic counter."""
        counter = await self.counters.find_one_and_update(
            {"_id": DEBT_NUMBER_COUNTER},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return f"DEBT-{counter['seq']:06d}"
