from datetime import timedelta

import pytest

from app.models.client import ClientStatus
from app.models.debt import DebtPriority, DebtStatus
from app.repositories.client_repo import ClientRepository
from app.repositories.debt_repo import DebtRepository
from app.schemas.client import ClientCreate
from app.schemas.debt import DebtUpdate
from app.schemas.payment import PaymentMetadata
from app.services.ledger_service import LedgerService
from app.services.reconciliation_service import PaymentReconciliationService
from app.utils.ledger_validation import ConflictError, LedgerValidationError, NotFoundError
from tests.helpers import ACTOR, NOW

META = PaymentMetadata(recorded_by=ACTOR)


@pytest.fixture
def ledger(test_db, clock):
    return LedgerService(test_db, clock=clock)


@pytest.fixture
def reconciliation(test_db, clock):
    return PaymentReconciliationService(test_db, clock=clock)


@pytest.mark.asyncio
async def test_archive_client_without_debt(ledger, acme):
    archived = await ledger.archive_client(str(acme.id))
    assert archived.status == ClientStatus.ARCHIVED


@pytest.mark.asyncio
async def test_archive_client_with_outstanding_debt(ledger, acme, make_debt):
    await make_debt()
    with pytest.raises(LedgerValidationError):
        await ledger.archive_client(str(acme.id))


@pytest.mark.asyncio
async def test_archive_client_after_settlement(ledger, reconciliation, acme, make_debt):
    paid = await make_debt(principal_cents=200)
    cancelled = await make_debt(principal_cents=900)
    await reconciliation.apply_payment(str(paid.id), 200, NOW, META)
    await ledger.cancel_debt(str(cancelled.id), ACTOR)

    archived = await ledger.archive_client(str(acme.id))

    assert archived.is_archived


@pytest.mark.asyncio
async def test_archive_unknown_client(ledger):
    with pytest.raises(NotFoundError):
        await ledger.archive_client("000000000000000000000000")


@pytest.mark.asyncio
async def test_cancel_debt(ledger, make_debt):
    debt = await make_debt()

    cancelled = await ledger.cancel_debt(str(debt.id), ACTOR, "duplicate invoice")

    assert cancelled.status == DebtStatus.CANCELLED
    assert cancelled.cancelled_at == NOW
    assert cancelled.cancelled_by == ACTOR
    assert cancelled.cancel_reason == "duplicate invoice"
    assert cancelled.version == debt.version + 1
    # Log and balance are preserved
    assert cancelled.balance_cents == debt.balance_cents


@pytest.mark.asyncio
async def test_cancel_terminal_debt_rejected(ledger, reconciliation, make_debt):
    debt = await make_debt(principal_cents=100)
    await reconciliation.apply_payment(str(debt.id), 100, NOW, META)

    with pytest.raises(LedgerValidationError):
        await ledger.cancel_debt(str(debt.id), ACTOR)


@pytest.mark.asyncio
async def test_cancel_twice_rejected(ledger, make_debt):
    debt = await make_debt()
    await ledger.cancel_debt(str(debt.id), ACTOR)
    with pytest.raises(LedgerValidationError):
        await ledger.cancel_debt(str(debt.id), ACTOR)


@pytest.mark.asyncio
async def test_cancel_lost_race(ledger, make_debt):
    debt = await make_debt()

    async def stale(*args, **kwargs):
        return None

    ledger.debt_repo.set_cancelled = stale
    with pytest.raises(ConflictError):
        await ledger.cancel_debt(str(debt.id), ACTOR)


@pytest.mark.asyncio
async def test_refresh_statuses_marks_overdue(ledger, reconciliation, make_debt, test_db):
    overdue = await make_debt(due_in=timedelta(days=1))
    settled = await make_debt(principal_cents=100, due_in=timedelta(days=1))
    not_due = await make_debt(due_in=timedelta(days=10))
    await reconciliation.apply_payment(str(settled.id), 100, NOW, META)

    count = await ledger.refresh_statuses(NOW + timedelta(days=2))

    assert count == 1
    repo = DebtRepository(test_db)
    assert (await repo.get_debt(str(overdue.id))).status == DebtStatus.OVERDUE
    assert (await repo.get_debt(str(settled.id))).status == DebtStatus.PAID
    assert (await repo.get_debt(str(not_due.id))).status == DebtStatus.OPEN

    # Nothing left to change
    assert await ledger.refresh_statuses(NOW + timedelta(days=2)) == 0


@pytest.mark.asyncio
async def test_audit_consistent(ledger, reconciliation, make_debt):
    debt = await make_debt(principal_cents=1000)
    await reconciliation.apply_payment(str(debt.id), 250, NOW, META)

    audit = await ledger.audit_debt(str(debt.id))

    assert audit.consistent
    assert audit.recomputed.balance_cents == 750
    assert audit.recomputed.status == DebtStatus.PARTIALLY_PAID


@pytest.mark.asyncio
async def test_audit_detects_tampered_cache(ledger, make_debt, test_db):
    debt = await make_debt(principal_cents=1000)
    await test_db["debts"].update_one({"_id": debt.id}, {"$set": {"balance_cents": 10}})

    audit = await ledger.audit_debt(str(debt.id))

    assert not audit.consistent
    assert audit.cached.balance_cents == 10
    assert audit.recomputed.balance_cents == 1000


@pytest.mark.asyncio
async def test_archive_loses_to_debt_created_during_scan(ledger, acme, make_debt, test_db):
    list_client_debts = ledger.debt_repo.list_client_debts

    async def list_then_create(client_id):
        debts = await list_client_debts(client_id)
        # A new debt lands after the scan saw none
        await make_debt()
        return debts

    ledger.debt_repo.list_client_debts = list_then_create

    with pytest.raises(ConflictError):
        await ledger.archive_client(str(acme.id))

    client = await ClientRepository(test_db).get_client(str(acme.id))
    assert client.status == ClientStatus.ACTIVE
    assert len(await DebtRepository(test_db).list_client_debts(str(acme.id))) == 1


@pytest.mark.asyncio
async def test_update_debt_fields(ledger, make_debt):
    debt = await make_debt(due_in=timedelta(days=10))

    updated = await ledger.update_debt(
        str(debt.id),
        DebtUpdate(description="Q1 retainer", priority=DebtPriority.URGENT, interest_rate_bp=150, notes=None)
    )

    assert updated.description == "Q1 retainer"
    assert updated.priority == DebtPriority.URGENT
    assert updated.interest_rate_bp == 150
    assert updated.notes is None
    assert updated.version == debt.version + 1
    assert updated.principal_cents == debt.principal_cents


@pytest.mark.asyncio
async def test_update_debt_due_date_rederives_status(ledger, make_debt):
    debt = await make_debt(due_in=timedelta(days=10))

    updated = await ledger.update_debt(str(debt.id), DebtUpdate(due_date=NOW - timedelta(hours=1)))

    assert updated.due_date == NOW - timedelta(hours=1)
    assert updated.status == DebtStatus.OVERDUE
    assert updated.status_as_of == NOW


@pytest.mark.asyncio
async def test_update_debt_rejections(ledger, make_debt):
    debt = await make_debt()
    with pytest.raises(LedgerValidationError):
        await ledger.update_debt(str(debt.id), DebtUpdate(due_date=NOW - timedelta(days=2)))
    with pytest.raises(LedgerValidationError):
        await ledger.update_debt(str(debt.id), DebtUpdate(interest_rate_bp=20000))
    with pytest.raises(LedgerValidationError):
        await ledger.update_debt(str(debt.id), DebtUpdate(priority=None))

    await ledger.cancel_debt(str(debt.id), ACTOR)
    with pytest.raises(LedgerValidationError):
        await ledger.update_debt(str(debt.id), DebtUpdate(description="too late"))


@pytest.mark.asyncio
async def test_update_debt_empty_is_noop(ledger, make_debt):
    debt = await make_debt()
    unchanged = await ledger.update_debt(str(debt.id), DebtUpdate())
    assert unchanged.version == debt.version


@pytest.mark.asyncio
async def test_update_debt_lost_race(ledger, make_debt):
    debt = await make_debt()

    async def stale(*args, **kwargs):
        return None

    ledger.debt_repo.update_details = stale
    with pytest.raises(ConflictError):
        await ledger.update_debt(str(debt.id), DebtUpdate(description="x"))


@pytest.mark.asyncio
async def test_list_debts_pages_newest_first(ledger, make_debt):
    debts = [await make_debt(description=f"invoice {n}") for n in range(5)]

    first = await ledger.list_debts(page=1, limit=2)
    last = await ledger.list_debts(page=3, limit=2)

    assert first.total == 5
    assert first.total_pages == 3
    assert [d.id for d in first.debts] == [str(debts[4].id), str(debts[3].id)]
    assert [d.id for d in last.debts] == [str(debts[0].id)]


@pytest.mark.asyncio
async def test_list_debts_overdue_with_interest(ledger, make_debt):
    late = await make_debt(principal_cents=10000, due_in=-timedelta(hours=12), interest_rate_bp=200)
    await make_debt(description="not due")

    page = await ledger.list_debts(overdue=True)

    assert page.total == 1
    listed = page.debts[0]
    assert listed.id == str(late.id)
    # Cached status is still open until a refresh runs
    assert listed.status == DebtStatus.OPEN
    assert listed.interest.months_overdue == 1
    assert listed.interest.interest_cents == 200
    assert listed.interest.total_with_interest_cents == 10200


@pytest.mark.asyncio
async def test_list_debts_filters(ledger, acme, make_debt, test_db):
    other = await ClientRepository(test_db).create_client(ClientCreate(name="Globex"))
    mine = await make_debt(priority=DebtPriority.HIGH, description="Server rack")
    await make_debt(client=other, priority=DebtPriority.HIGH)
    await make_debt(description="server hosting")

    by_client = await ledger.list_debts(client_id=str(acme.id), priority=DebtPriority.HIGH)
    by_search = await ledger.list_debts(search="server")

    assert [d.id for d in by_client.debts] == [str(mine.id)]
    assert by_search.total == 2
    with pytest.raises(LedgerValidationError):
        await ledger.list_debts(limit=0)


@pytest.mark.asyncio
async def test_debt_interest_as_of(ledger, make_debt):
    debt = await make_debt(principal_cents=5000, due_in=timedelta(days=1), interest_rate_bp=100)

    _, before = await ledger.debt_interest(str(debt.id))
    _, after = await ledger.debt_interest(str(debt.id), NOW + timedelta(days=62))

    assert before.interest_cents == 0
    assert after.months_overdue == 3
    assert after.interest_cents == 150
