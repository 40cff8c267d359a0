import asyncio
import uuid
import pytest
import jwt
from httpx import AsyncClient, ASGITransport
from fastapi import status
import app as app_module
from app import app
from core.config import setting
from tests.fakes import OWNER, SAMPLE_AMOUNTS, SAMPLE_RECEIVERS, FakeChain, make_distributor

default_payload = {
    "transaction_id": "test_transaction_id",
    "receivers": SAMPLE_RECEIVERS,
    "amounts": SAMPLE_AMOUNTS,
}


def create_jwt_token():
    """Helper function to create a JWT token for testing."""
    payload = {
        "sub": "test_user",
        "jti": str(uuid.uuid4()),
        "exp": 9999999999  # Set a far future expiration for testing
    }
    token = jwt.encode(payload, setting.JWT_SECRET_KEY, algorithm=setting.JWT_ALGORITHM)
    return token


def auth_headers():
    return {'Authorization': f'Bearer {create_jwt_token()}'}


@pytest.fixture
def fake_chain(monkeypatch):
    chain = FakeChain(balances={OWNER: sum(SAMPLE_AMOUNTS) * 2})
    distributor = make_distributor(chain)

    async def get_distributor():
        return distributor

    monkeypatch.setattr(app_module, "get_distributor", get_distributor)
    return chain


@pytest.fixture
async def client():
    async with AsyncClient(base_url="http://test", transport=ASGITransport(app=app)) as client:
        yield client


@pytest.mark.anyio
async def test_distribution_success(client, fake_chain):
    response = await client.post("/api/v1/distributions", json=default_payload, headers=auth_headers())

    assert response.status_code == status.HTTP_200_OK
    assert "X-Request-ID" in response.headers
    body = response.json()
    assert body["status"] == "success"
    assert body["approve_tx"] and body["distribute_tx"]
    assert body["balances"] == [
        {"address": address, "balance": amount, "error": None}
        for address, amount in zip(SAMPLE_RECEIVERS, SAMPLE_AMOUNTS)
    ]


@pytest.mark.anyio
async def test_sequential_requests(client, fake_chain):
    # The semaphore serialises distributions, so both succeed against one ledger.
    responses = await asyncio.gather(
        client.post("/api/v1/distributions", json=default_payload, headers=auth_headers()),
        client.post("/api/v1/distributions", json=default_payload, headers=auth_headers()),
    )
    response1, response2 = responses

    assert response1.status_code == status.HTTP_200_OK
    assert response2.status_code == status.HTTP_200_OK
    assert response1.json()["status"] == "success"
    assert response2.json()["status"] == "success"
    assert fake_chain.submitted == ["approve", "bulksendToken"] * 2
    assert fake_chain.balances[OWNER] == 0


@pytest.mark.anyio
async def test_mismatched_batch_is_rejected(client, fake_chain):
    payload = dict(default_payload, amounts=SAMPLE_AMOUNTS[:-1])

    response = await client.post("/api/v1/distributions", json=payload, headers=auth_headers())

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert fake_chain.submitted == []


@pytest.mark.anyio
async def test_bulk_send_failure_is_reported(client, fake_chain):
    fake_chain.revert.add("bulksendToken")

    response = await client.post("/api/v1/distributions", json=default_payload, headers=auth_headers())

    body = response.json()
    assert response.status_code == status.HTTP_200_OK
    assert body["status"] == "error"
    assert body["message"].startswith("distribute failed")
    assert [entry["balance"] for entry in body["balances"]] == [0] * len(SAMPLE_RECEIVERS)


@pytest.mark.anyio
async def test_missing_token_is_rejected(client, fake_chain):
    response = await client.post("/api/v1/distributions", json=default_payload)

    assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)
    assert fake_chain.submitted == []


@pytest.mark.anyio
async def test_reused_token_is_rejected(client, fake_chain):
    headers = auth_headers()
    first = await client.post("/api/v1/distributions", json=default_payload, headers=headers)
    second = await client.post("/api/v1/distributions", json=default_payload, headers=headers)

    assert first.status_code == status.HTTP_200_OK
    assert second.status_code == status.HTTP_401_UNAUTHORIZED
    assert second.json()["detail"] == "Token has been used before"


@pytest.mark.anyio
async def test_balances(client, fake_chain):
    fake_chain.balances[SAMPLE_RECEIVERS[0]] = 42
    fake_chain.unreadable.add(SAMPLE_RECEIVERS[1])

    response = await client.post(
        "/api/v1/balances",
        json={"addresses": SAMPLE_RECEIVERS[:2]},
        headers=auth_headers(),
    )

    assert response.status_code == status.HTTP_200_OK
    first, second = response.json()["balances"]
    assert first == {"address": SAMPLE_RECEIVERS[0], "balance": 42, "error": None}
    assert second["balance"] is None and second["error"]


@pytest.mark.anyio
async def test_repeated_receiver_keeps_every_balance_entry(client, fake_chain):
    receiver = SAMPLE_RECEIVERS[0]
    payload = dict(default_payload, receivers=[receiver, receiver], amounts=[5, 7])

    response = await client.post("/api/v1/distributions", json=payload, headers=auth_headers())

    body = response.json()
    assert body["status"] == "success"
    assert body["balances"] == [
        {"address": receiver, "balance": 12, "error": None},
        {"address": receiver, "balance": 12, "error": None},
    ]
