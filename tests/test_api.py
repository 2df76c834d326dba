"""HTTP surface: identity, routes and the error envelope."""

import pytest
from conftest import IMAGE_B64, ScorerStub, login

import looksia.workflows.analysis_flow as analysis_flow

pytestmark = pytest.mark.asyncio


@pytest.fixture
def stub_scorer(monkeypatch):
    stub = ScorerStub()
    monkeypatch.setattr(analysis_flow, "get_scorer", lambda: stub.scorer)
    return stub


async def test_ledger_routes_require_identity(client):
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 401
    body = r.json()
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert "request_id" in body


async def test_tampered_cookie_is_rejected(client):
    client.cookies.set("looksia_session", "not-a-signed-cookie")
    r = await client.post("/v1/spins")
    assert r.status_code == 401


async def test_open_account_and_balance(client):
    login(client, "api-1")
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"

    r = await client.post("/v1/credits/account")
    assert r.status_code == 200
    assert r.json()["balance"] == {"basic_analyses": 1, "pro_analyses": 0, "spins": 3}

    r = await client.post("/v1/credits/account")
    assert r.json()["balance"]["spins"] == 3
    r = await client.get("/v1/credits/balance")
    assert r.json()["balance"] == {"basic_analyses": 1, "pro_analyses": 0, "spins": 3}


async def test_spin_until_empty(client):
    login(client, "api-2")
    await client.post("/v1/credits/account")
    for remaining in (2, 1, 0):
        r = await client.post("/v1/spins")
        assert r.status_code == 200
        body = r.json()
        assert body["state"] == "resolved"
        assert body["prize_type"] in ("basic", "pro")
        assert body["balance"]["spins"] == remaining
    assert body["balance"]["basic_analyses"] + body["balance"]["pro_analyses"] == 1 + 3

    r = await client.post("/v1/spins")
    assert r.status_code == 402
    assert r.json()["error"]["code"] == "INSUFFICIENT_CREDIT"
    assert r.json()["error"]["details"] == {"kind": "spins"}

    r = await client.get("/v1/spins", params={"limit": 2})
    assert r.status_code == 200
    assert len(r.json()["spins"]) == 2
    assert r.json()["next_offset"] == 2


async def test_spin_with_idempotency_key(client):
    login(client, "api-3")
    await client.post("/v1/credits/account")
    first = (await client.post("/v1/spins", headers={"Idempotency-Key": "wheel-1"})).json()
    second = (await client.post("/v1/spins", headers={"Idempotency-Key": "wheel-1"})).json()
    assert second["replayed"] is True
    assert second["spin"]["id"] == first["spin"]["id"]
    assert second["balance"]["spins"] == 2


async def test_analysis_requires_idempotency_key(client, stub_scorer):
    login(client, "api-4")
    await client.post("/v1/credits/account")
    r = await client.post("/v1/analyses", json={"analysis_type": "basic", "image": IMAGE_B64})
    assert r.status_code == 400
    assert stub_scorer.calls == 0


async def test_analysis_round_trip(client, stub_scorer):
    login(client, "api-5")
    await client.post("/v1/credits/account")
    r = await client.post(
        "/v1/analyses",
        json={"analysis_type": "basic", "image": IMAGE_B64},
        headers={"Idempotency-Key": "scan-1"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["analysis"]["score"] == 7.4
    assert body["analysis"]["result"]["label"] == "Atraente"
    assert body["balance"]["basic_analyses"] == 0

    r = await client.post(
        "/v1/analyses",
        json={"analysis_type": "pro", "image": IMAGE_B64},
        headers={"Idempotency-Key": "scan-2"},
    )
    assert r.status_code == 402
    assert r.json()["error"]["details"]["kind"] == "pro_analyses"

    r = await client.get("/v1/analyses")
    assert [a["id"] for a in r.json()["analyses"]] == [body["analysis"]["id"]]


async def test_analysis_scorer_outage(client, monkeypatch):
    stub = ScorerStub(status_code=502, body={"error": "upstream"})
    monkeypatch.setattr(analysis_flow, "get_scorer", lambda: stub.scorer)
    login(client, "api-6")
    await client.post("/v1/credits/account")
    r = await client.post(
        "/v1/analyses",
        json={"analysis_type": "basic", "image": IMAGE_B64},
        headers={"Idempotency-Key": "scan-3"},
    )
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "EXTERNAL_SERVICE_ERROR"
    r = await client.get("/v1/credits/balance")
    assert r.json()["balance"]["basic_analyses"] == 1


async def test_analysis_invalid_image(client, stub_scorer):
    login(client, "api-7")
    await client.post("/v1/credits/account")
    r = await client.post(
        "/v1/analyses",
        json={"analysis_type": "basic", "image": "%%%"},
        headers={"Idempotency-Key": "scan-4"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_INPUT"


async def test_purchase_flow(client):
    r = await client.get("/v1/purchases/catalog")
    assert r.status_code == 200
    assert len(r.json()["products"]) == 6

    login(client, "api-8")
    await client.post("/v1/credits/account")
    body = {"product_type": "spins", "quantity": 10}
    r = await client.post("/v1/purchases", json=body, headers={"Idempotency-Key": "pay-1"})
    assert r.status_code == 200
    first = r.json()
    assert first["created"] is True
    assert first["transaction"]["amount"] == "8.99"
    assert first["balance"]["spins"] == 13

    r = await client.post("/v1/purchases", json=body, headers={"Idempotency-Key": "pay-1"})
    assert r.json()["created"] is False
    assert r.json()["balance"]["spins"] == 13

    r = await client.get("/v1/purchases")
    assert len(r.json()["transactions"]) == 1


async def test_purchase_validation(client):
    login(client, "api-9")
    await client.post("/v1/credits/account")
    r = await client.post("/v1/purchases", json={"product_type": "spins", "quantity": 3})
    assert r.status_code == 400

    r = await client.post(
        "/v1/purchases",
        json={"product_type": "spins", "quantity": 0},
        headers={"Idempotency-Key": "pay-2"},
    )
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    r = await client.post(
        "/v1/purchases",
        json={"product_type": "spins", "quantity": 7},
        headers={"Idempotency-Key": "pay-3"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_INPUT"
