import math
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_actor, get_debt_repository, get_ledger_service, get_stats_service
from app.db.mongo import get_db
from app.models.client import ClientStatus, ClientType
from app.repositories.client_repo import ClientRepository
from app.repositories.debt_repo import DebtRepository
from app.schemas.client import ClientCreate, ClientPage, ClientResponse, ClientUpdate
from app.schemas.debt import DebtResponse
from app.schemas.stats import ClientStats, ClientSummary
from app.services.ledger_service import LedgerService
from app.services.stats_service import StatsService

router = APIRouter()


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    client_data: ClientCreate,
    actor: str = Depends(get_actor),
    db = Depends(get_db)
):
    """Create a new active client."""
    client = await ClientRepository(db).create_client(client_data, created_by=actor)
    return ClientResponse.from_model(client)


@router.get("", response_model=ClientPage)
async def list_clients(
    client_status: Optional[ClientStatus] = Query(None, alias="status"),
    client_type: Optional[ClientType] = Query(None, alias="type"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    actor: str = Depends(get_actor),
    db = Depends(get_db)
):
    """List clients by name, optionally filtered by status, type or a name/email/tax id search."""
    repo = ClientRepository(db)
    total = await repo.count_clients(client_status, client_type, search)
    clients = await repo.list_clients(
        client_status, client_type, search, skip=(page - 1) * limit, limit=limit
    )
    return ClientPage(
        clients=[ClientResponse.from_model(client) for client in clients],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit)
    )


@router.get("/search", response_model=List[ClientResponse])
async def search_clients(
    q: str = Query(..., min_length=1),
    actor: str = Depends(get_actor),
    db = Depends(get_db)
):
    """Quick lookup for pickers: active clients only, first 10 by name."""
    clients = await ClientRepository(db).list_clients(ClientStatus.ACTIVE, search=q, limit=10)
    return [ClientResponse.from_model(client) for client in clients]


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: str,
    actor: str = Depends(get_actor),
    db = Depends(get_db)
):
    client = await ClientRepository(db).get_client(client_id)
    return ClientResponse.from_model(client)


@router.patch("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: str,
    changes: ClientUpdate,
    actor: str = Depends(get_actor),
    db = Depends(get_db)
):
    """Edit profile fields. Archived clients are read-only."""
    client = await ClientRepository(db).update_client(client_id, changes)
    return ClientResponse.from_model(client)


@router.post("/{client_id}/archive", response_model=ClientResponse)
async def archive_client(
    client_id: str,
    actor: str = Depends(get_actor),
    ledger: LedgerService = Depends(get_ledger_service)
):
    """Archive a client with no outstanding debt."""
    client = await ledger.archive_client(client_id)
    return ClientResponse.from_model(client)


@router.get("/{client_id}/debts", response_model=List[DebtResponse])
async def list_client_debts(
    client_id: str,
    actor: str = Depends(get_actor),
    db = Depends(get_db),
    debts: DebtRepository = Depends(get_debt_repository)
):
    await ClientRepository(db).get_client(client_id)
    return [DebtResponse.from_model(debt) for debt in await debts.list_client_debts(client_id)]

@router.get("/{client_id}/stats", response_model=ClientStats)
async def get_client_stats(
    client_id: str,
    actor: str = Depends(get_actor),
    stats: StatsService = Depends(get_stats_service)
):
    return await stats.client_stats(client_id)


@router.get("/{client_id}/summary", response_model=ClientSummary)
async def get_client_summary(
    client_id: str,
    as_of: Optional[datetime] = None,
    actor: str = Depends(get_actor),
    stats: StatsService = Depends(get_stats_service)
):
    """Profile, stats, the 10 latest ledger entries and credit-limit utilization."""
    return await stats.client_summary(client_id, as_of)
