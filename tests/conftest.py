from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.db.mongo import create_indexes, get_db
from app.main import app
from app.repositories.client_repo import ClientRepository
from app.repositories.debt_repo import DebtRepository
from app.schemas.client import ClientCreate
from tests.helpers import ACTOR, NOW


@pytest_asyncio.fixture
async def test_db() -> AsyncIOMotorDatabase:
    """In-memory MongoDB; each test gets a fresh database."""
    client = AsyncMongoMockClient()
    db = client["debt_ledger_test"]
    await create_indexes(db)
    yield db


@pytest_asyncio.fixture
async def api_client(test_db):
    """HTTP client against the app, wired to the in-memory database."""
    app.dependency_overrides[get_db] = lambda: test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def actor_headers():
    return {"X-Actor-Id": ACTOR}


@pytest.fixture
def clock():
    return lambda: NOW


@pytest_asyncio.fixture
async def acme(test_db):
    """An active company client."""
    return await ClientRepository(test_db).create_client(
        ClientCreate(name="Acme Corp", client_type="company", email="billing@acme.test"),
        created_by=ACTOR
    )


@pytest_asyncio.fixture
async def make_debt(test_db, acme):
    """Factory for debts issued at NOW."""
    repo = DebtRepository(test_db)

    async def _make(principal_cents=1000, due_in=timedelta(days=30), currency="USD", client=None, **kwargs):
        owner = client or acme
        return await repo.create_debt(
            str(owner.id),
            principal_cents,
            NOW + due_in,
            currency,
            created_by=ACTOR,
            now=NOW,
            **kwargs
        )

    return _make
