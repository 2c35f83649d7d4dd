from datetime import datetime, timedelta, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_actor, get_reminder_service
from app.core.config import settings
from app.schemas.reminder import ReminderCandidate
from app.services.reminder_service import ReminderService

router = APIRouter()


@router.get("/due", response_model=List[ReminderCandidate])
async def list_due(
    as_of: Optional[datetime] = Query(None),
    lookahead_days: Optional[int] = Query(None),
    actor: str = Depends(get_actor),
    reminders: ReminderService = Depends(get_reminder_service)
):
    """
    Debts coming due within the lookahead window.

    A negative lookahead_days is rejected with 400.
    """
    if lookahead_days is None:
        lookahead_days = settings.REMINDER_DEFAULT_LOOKAHEAD_DAYS
    return await reminders.due_for_reminder(
        as_of or datetime.now(timezone.utc),
        timedelta(days=lookahead_days)
    )


@router.get("/overdue", response_model=List[ReminderCandidate])
async def list_overdue(
    as_of: Optional[datetime] = Query(None),
    actor: str = Depends(get_actor),
    reminders: ReminderService = Depends(get_reminder_service)
):
    return await reminders.overdue_for_reminder(as_of or datetime.now(timezone.utc))
