"""
ReminderService - read-only candidate queries for the notification scheduler.

The scheduler owns cadence, send hours and daily caps; nothing here decides
whether a reminder is sent.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.client import Client
from app.models.debt import Debt, DebtStatus
from app.repositories.client_repo import ClientRepository
from app.repositories.debt_repo import DebtRepository
from app.schemas.reminder import ReminderCandidate
from app.utils.ledger_validation import LedgerValidationError, ensure_utc

SECONDS_PER_DAY = 86400
_EXCLUDED = [DebtStatus.PAID.value, DebtStatus.CANCELLED.value]


class ReminderService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.client_repo = ClientRepository(db)
        self.debt_repo = DebtRepository(db)

    async def due_for_reminder(self, as_of: datetime, lookahead: timedelta) -> List[ReminderCandidate]:
        """Unpaid, uncancelled debts due within [as_of, as_of + lookahead], earliest first."""
        if lookahead < timedelta(0):
            raise LedgerValidationError("Lookahead window must not be negative")
        as_of = ensure_utc(as_of)
        query = {
            "balance_cents": {"$gt": 0},
            "status": {"$nin": _EXCLUDED},
            "due_date": {"$gte": as_of, "$lte": as_of + lookahead},
        }
        candidates = []
        clients: Dict[str, Client] = {}
        async for debt in self.debt_repo.iter_debts(query):
            seconds = (debt.due_date - as_of).total_seconds()
            candidate = await self._candidate(debt, clients)
            candidate.days_until_due = math.floor(seconds / SECONDS_PER_DAY)
            candidates.append(candidate)
        return candidates

    async def overdue_for_reminder(self, as_of: datetime) -> List[ReminderCandidate]:
        """Unpaid, uncancelled debts whose due date is before as_of, most overdue first."""
        as_of = ensure_utc(as_of)
        query = {
            "balance_cents": {"$gt": 0},
            "status": {"$nin": _EXCLUDED},
            "due_date": {"$lt": as_of},
        }
        candidates = []
        clients: Dict[str, Client] = {}
        async for debt in self.debt_repo.iter_debts(query):
            seconds = (as_of - debt.due_date).total_seconds()
            candidate = await self._candidate(debt, clients)
            candidate.days_overdue = math.ceil(seconds / SECONDS_PER_DAY)
            candidates.append(candidate)
        return candidates

    async def _candidate(self, debt: Debt, clients: Dict[str, Client]) -> ReminderCandidate:
        client_key = str(debt.client_id)
        if client_key not in clients:
            clients[client_key] = await self.client_repo.get_client(client_key)
        client = clients[client_key]

        return ReminderCandidate(
            debt_id=str(debt.id),
            debt_number=debt.debt_number,
            client_id=client_key,
            client_name=client.name,
            client_email=client.email,
            description=debt.description,
            due_date=debt.due_date,
            balance_cents=debt.balance_cents,
            currency=debt.currency,
            email_notifications=debt.email_notifications,
        )
