from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_actor, get_stats_service
from app.schemas.stats import DebtStats
from app.services.stats_service import StatsService

router = APIRouter()


@router.get("/portfolio", response_model=DebtStats)
async def get_portfolio_stats(
    as_of: Optional[datetime] = Query(None),
    actor: str = Depends(get_actor),
    stats: StatsService = Depends(get_stats_service)
):
    """Portfolio-wide totals, status buckets and collection rate."""
    return await stats.portfolio_stats(as_of)
