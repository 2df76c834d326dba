"""
Mongo ledger backend. Needs a replica set (transactions), so it only runs when
LOOKSIA_TEST_MONGODB_URI is set, e.g. mongodb://localhost:27017/?replicaSet=rs0
"""

import asyncio
import os
import uuid

import pytest
import pytest_asyncio

from looksia.core.exceptions import ConcurrentUpdateConflict, InsufficientCreditError, NotFoundError
from looksia.models.ledger import Balance, CreditKind, PrizeType
from looksia.services import credits as credits_service
from looksia.services import journal
from looksia.services import purchases as purchases_service
from looksia.storage.base import get_ledger_store
from looksia.storage.mongo import MongoLedgerStore
from looksia.workflows.spin_flow import run_spin

MONGODB_URI = os.environ.get("LOOKSIA_TEST_MONGODB_URI")

pytestmark = [
    pytest.mark.asyncio,
    pytest.mark.skipif(not MONGODB_URI, reason="LOOKSIA_TEST_MONGODB_URI not set"),
]


@pytest_asyncio.fixture
async def mongo_store(monkeypatch):
    db_name = f"looksia_test_{uuid.uuid4().hex[:8]}"
    monkeypatch.setenv("LEDGER_BACKEND", "mongo")
    monkeypatch.setenv("MONGODB_URI", MONGODB_URI)
    monkeypatch.setenv("MONGODB_DB_NAME", db_name)
    from looksia.core.config import get_settings
    get_settings.cache_clear()
    get_ledger_store.cache_clear()
    store = get_ledger_store()
    assert isinstance(store, MongoLedgerStore)
    await store.init()
    yield store
    await store.client.drop_database(db_name)
    await store.close()


async def test_open_account_upserts_once(mongo_store):
    first = await credits_service.open_account("m1")
    await credits_service.consume("m1", CreditKind.SPINS)
    again = await credits_service.open_account("m1")
    assert (first.spins, again.spins) == (3, 2)


async def test_concurrent_consume(mongo_store):
    await mongo_store.open_account(Balance(user_id="m2", spins=3))
    results = await asyncio.gather(
        *(credits_service.consume("m2", CreditKind.SPINS) for _ in range(8)),
        return_exceptions=True,
    )
    successes = sum(1 for r in results if isinstance(r, Balance))
    # write conflicts that outlast the retries surface as ConcurrentUpdateConflict
    assert all(isinstance(r, (Balance, InsufficientCreditError, ConcurrentUpdateConflict)) for r in results)
    assert 1 <= successes <= 3
    assert (await credits_service.get_balance("m2")).spins == 3 - successes


async def test_unknown_account(mongo_store):
    with pytest.raises(NotFoundError):
        await credits_service.consume("ghost", CreditKind.SPINS)


async def test_spin_commits_transfer_and_record(mongo_store):
    await mongo_store.open_account(Balance(user_id="m3", basic_analyses=1, spins=2))
    outcome = await run_spin("m3", source=lambda: 0.05, idempotency_key="spin-m3")
    assert outcome["prize_type"] == PrizeType.PRO
    balance = await credits_service.get_balance("m3")
    assert (balance.basic_analyses, balance.pro_analyses, balance.spins) == (1, 1, 1)
    replay = await run_spin("m3", source=lambda: 0.95, idempotency_key="spin-m3")
    assert replay["replayed"] is True
    assert len((await journal.list_spins("m3")).items) == 1


async def test_purchase_is_idempotent(mongo_store):
    await mongo_store.open_account(Balance(user_id="m4"))
    await purchases_service.purchase("m4", "spins", 5, "order-m4")
    tx, created = await purchases_service.purchase("m4", "spins", 5, "order-m4")
    assert created is False
    assert str(tx.amount) == "4.99"
    assert (await credits_service.get_balance("m4")).spins == 5
    assert len((await journal.list_transactions("m4")).items) == 1
