from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel

from app.schemas.client import ClientResponse
from app.schemas.payment import PaymentResponse


class ClientStats(BaseModel):
    """Per-client aggregate; derived on read, never stored."""
    client_id: str
    as_of: datetime
    debt_count: int = 0
    open_debt_count: int = 0     # balance > 0, not cancelled
    overdue_count: int = 0
    paid_count: int = 0
    cancelled_count: int = 0
    total_principal_cents: int = 0
    total_paid_cents: int = 0
    total_owed_cents: int = 0    # sum of outstanding balances
    total_credit_cents: int = 0
    total_interest_cents: int = 0  # late interest on overdue debts; not part of owed
    currencies: List[str] = []


class StatusBucket(BaseModel):
    count: int = 0
    owed_cents: int = 0


class DebtStats(BaseModel):
    """Portfolio-wide aggregate for admin dashboards."""
    as_of: datetime
    client_count: int = 0
    active_client_count: int = 0
    debt_count: int = 0
    debts_by_status: Dict[str, StatusBucket] = {}
    overdue_count: int = 0
    total_principal_cents: int = 0
    total_paid_cents: int = 0
    total_owed_cents: int = 0
    total_credit_cents: int = 0
    average_principal_cents: int = 0
    average_days_to_pay: Optional[float] = None
    collection_rate: float = 0.0


class RecentPayment(BaseModel):
    debt_id: str
    debt_number: str
    payment: PaymentResponse


class ClientSummary(BaseModel):
    """Client profile, stats, latest ledger entries and credit-limit use."""
    client: ClientResponse
    stats: ClientStats
    recent_payments: List[RecentPayment] = []
    credit_utilization: Optional[float] = None  # percent of the credit limit owed; None without a limit
