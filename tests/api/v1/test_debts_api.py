from datetime import datetime, timedelta, timezone

import pytest

# The API reads the real clock, so dates are relative to it
NOW = datetime.now(timezone.utc).replace(microsecond=0)


async def _create_client(api_client, headers, name="Acme Corp"):
    response = await api_client.post("/api/v1/clients", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()


async def _create_debt(api_client, headers, client_id, principal=1000, due_in=timedelta(days=30)):
    response = await api_client.post(
        "/api/v1/debts",
        json={
            "client_id": client_id,
            "principal_cents": principal,
            "currency": "USD",
            "due_date": (NOW + due_in).isoformat(),
            "description": "Consulting, February",
        },
        headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_missing_actor_header(api_client):
    response = await api_client.get("/api/v1/clients")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_and_get_debt(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"])

    assert debt["status"] == "open"
    assert debt["balance_cents"] == 1000
    assert debt["payment_count"] == 0

    response = await api_client.get(f"/api/v1/debts/{debt['id']}", headers=actor_headers)
    assert response.status_code == 200
    assert response.json()["debt_number"] == debt["debt_number"]


@pytest.mark.asyncio
async def test_unknown_debt_is_404(api_client, actor_headers):
    response = await api_client.get("/api/v1/debts/000000000000000000000000", headers=actor_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_invalid_principal_is_400(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    response = await api_client.post(
        "/api/v1/debts",
        json={
            "client_id": client["id"],
            "principal_cents": 0,
            "currency": "USD",
            "due_date": (NOW + timedelta(days=1)).isoformat(),
        },
        headers=actor_headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_payment_flow(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"])
    url = f"/api/v1/debts/{debt['id']}/payments"

    first = await api_client.post(url, json={"amount_cents": 600, "method": "bank_transfer"}, headers=actor_headers)
    assert first.status_code == 200
    body = first.json()
    assert body["replayed"] is False
    assert body["debt"]["balance_cents"] == 400
    assert body["debt"]["status"] == "partially_paid"
    assert body["payment"]["recorded_by"] == actor_headers["X-Actor-Id"]

    second = await api_client.post(url, json={"amount_cents": 400}, headers=actor_headers)
    assert second.json()["debt"]["status"] == "paid"

    over = await api_client.post(url, json={"amount_cents": 1}, headers=actor_headers)
    assert over.status_code == 409
    assert over.json()["error"] == "overpayment"

    payments = await api_client.get(url, headers=actor_headers)
    assert [p["amount_cents"] for p in payments.json()] == [600, 400]


@pytest.mark.asyncio
async def test_idempotency_key_header(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"])
    url = f"/api/v1/debts/{debt['id']}/payments"
    headers = {**actor_headers, "Idempotency-Key": "invoice-17-attempt"}

    first = await api_client.post(url, json={"amount_cents": 250}, headers=headers)
    second = await api_client.post(url, json={"amount_cents": 250}, headers=headers)

    assert second.json()["replayed"] is True
    assert second.json()["payment"]["id"] == first.json()["payment"]["id"]
    assert second.json()["debt"]["payment_count"] == 1


@pytest.mark.asyncio
async def test_currency_mismatch_is_400(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"])

    response = await api_client.post(
        f"/api/v1/debts/{debt['id']}/payments",
        json={"amount_cents": 100, "currency": "EUR"},
        headers=actor_headers
    )

    assert response.status_code == 400
    assert response.json()["error"] == "currency_mismatch"


@pytest.mark.asyncio
async def test_reverse_cancel_and_audit(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"])
    paid = await api_client.post(
        f"/api/v1/debts/{debt['id']}/payments", json={"amount_cents": 300}, headers=actor_headers
    )
    payment_id = paid.json()["payment"]["id"]

    reversed_ = await api_client.post(
        f"/api/v1/debts/{debt['id']}/payments/{payment_id}/reverse",
        json={"notes": "chargeback"},
        headers=actor_headers
    )
    assert reversed_.status_code == 200
    assert reversed_.json()["payment"]["kind"] == "reversal"
    assert reversed_.json()["debt"]["balance_cents"] == 1000

    audit = await api_client.get(f"/api/v1/debts/{debt['id']}/audit", headers=actor_headers)
    assert audit.json()["consistent"] is True

    cancelled = await api_client.post(
        f"/api/v1/debts/{debt['id']}/cancel", json={"reason": "disputed"}, headers=actor_headers
    )
    assert cancelled.json()["status"] == "cancelled"

    again = await api_client.post(f"/api/v1/debts/{debt['id']}/cancel", json={}, headers=actor_headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_list_debts(api_client, actor_headers):
    acme = await _create_client(api_client, actor_headers)
    globex = await _create_client(api_client, actor_headers, name="Globex")
    older = await _create_debt(api_client, actor_headers, acme["id"])
    late = await _create_debt(api_client, actor_headers, acme["id"], due_in=-timedelta(hours=2))
    await _create_debt(api_client, actor_headers, globex["id"])

    everything = await api_client.get("/api/v1/debts", headers=actor_headers)
    assert everything.status_code == 200
    assert everything.json()["total"] == 3

    mine = await api_client.get(
        "/api/v1/debts", params={"client_id": acme["id"], "limit": 1, "page": 2}, headers=actor_headers
    )
    assert mine.json()["total"] == 2
    assert mine.json()["total_pages"] == 2
    assert [d["id"] for d in mine.json()["debts"]] == [older["id"]]

    overdue = await api_client.get("/api/v1/debts", params={"overdue": "true"}, headers=actor_headers)
    assert [d["id"] for d in overdue.json()["debts"]] == [late["id"]]
    assert overdue.json()["debts"][0]["interest"]["months_overdue"] == 1

    too_big = await api_client.get("/api/v1/debts", params={"limit": 500}, headers=actor_headers)
    assert too_big.status_code == 422


@pytest.mark.asyncio
async def test_update_debt(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"])

    response = await api_client.patch(
        f"/api/v1/debts/{debt['id']}",
        json={"priority": "urgent", "interest_rate_bp": 250, "due_date": (NOW - timedelta(hours=1)).isoformat()},
        headers=actor_headers
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["priority"] == "urgent"
    assert body["interest_rate_bp"] == 250
    assert body["status"] == "overdue"
    assert body["principal_cents"] == debt["principal_cents"]

    # Financial fields are not part of the update body
    ignored = await api_client.patch(
        f"/api/v1/debts/{debt['id']}", json={"principal_cents": 1}, headers=actor_headers
    )
    assert ignored.json()["principal_cents"] == debt["principal_cents"]


@pytest.mark.asyncio
async def test_debt_interest(api_client, actor_headers):
    client = await _create_client(api_client, actor_headers)
    debt = await _create_debt(api_client, actor_headers, client["id"], principal=10000, due_in=timedelta(days=1))
    await api_client.patch(f"/api/v1/debts/{debt['id']}", json={"interest_rate_bp": 100}, headers=actor_headers)

    current = await api_client.get(f"/api/v1/debts/{debt['id']}", headers=actor_headers)
    assert current.json()["interest"]["interest_cents"] == 0

    later = await api_client.get(
        f"/api/v1/debts/{debt['id']}/interest",
        params={"as_of": (NOW + timedelta(days=40)).isoformat()},
        headers=actor_headers
    )
    assert later.status_code == 200
    assert later.json() == {
        "months_overdue": 2,
        "rate_bp": 100,
        "interest_cents": 200,
        "total_with_interest_cents": 10200,
    }
