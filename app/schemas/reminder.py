from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ReminderCandidate(BaseModel):
    """A debt the notification scheduler may want to remind about."""
    debt_id: str
    debt_number: str
    client_id: str
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    description: str = ""
    due_date: datetime
    balance_cents: int
    currency: str
    email_notifications: bool
    days_until_due: Optional[int] = None
    days_overdue: Optional[int] = None
