from datetime import timedelta

from fastapi import Depends, Header, HTTPException, status

from app.core.config import settings
from app.db.mongo import get_db
from app.repositories.debt_repo import DebtRepository
from app.services.ledger_service import LedgerService
from app.services.reconciliation_service import PaymentReconciliationService
from app.services.reminder_service import ReminderService
from app.services.stats_service import StatsService


async def get_actor(x_actor_id: str = Header(None)) -> str:
    """
    Acting user id, as established by the upstream auth layer.

    The value is trusted as given; this service does not authenticate.
    """
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header"
        )
    return x_actor_id


def _overdue_grace() -> timedelta:
    return timedelta(days=settings.OVERDUE_GRACE_DAYS)


def get_debt_repository(db = Depends(get_db)) -> DebtRepository:
    return DebtRepository(db, due_date_grace=timedelta(hours=settings.DUE_DATE_GRACE_HOURS))


def get_reconciliation_service(db = Depends(get_db)) -> PaymentReconciliationService:
    return PaymentReconciliationService(
        db,
        overpayment_policy=settings.OVERPAYMENT_POLICY,
        max_retries=settings.PAYMENT_MAX_RETRIES,
        overdue_grace=_overdue_grace(),
    )


def get_ledger_service(db = Depends(get_db)) -> LedgerService:
    return LedgerService(
        db,
        overdue_grace=_overdue_grace(),
        due_date_grace=timedelta(hours=settings.DUE_DATE_GRACE_HOURS),
    )


def get_stats_service(db = Depends(get_db)) -> StatsService:
    return StatsService(db, overdue_grace=_overdue_grace())


def get_reminder_service(db = Depends(get_db)) -> ReminderService:
    return ReminderService(db)
