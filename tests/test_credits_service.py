"""Credit service against the in-memory ledger."""

import asyncio

import pytest

from looksia.core.exceptions import InsufficientCreditError, InvalidInputError, NotFoundError
from looksia.models.ledger import CreditKind
from looksia.services import credits as credits_service

pytestmark = pytest.mark.asyncio


async def test_open_account_grants_starting_bonus():
    balance = await credits_service.open_account("user-1")
    assert (balance.basic_analyses, balance.pro_analyses, balance.spins) == (1, 0, 3)


async def test_open_account_is_idempotent():
    await credits_service.open_account("user-1")
    await credits_service.consume("user-1", CreditKind.SPINS)
    again = await credits_service.open_account("user-1")
    assert again.spins == 2


async def test_get_balance_unknown_user():
    with pytest.raises(NotFoundError):
        await credits_service.get_balance("nobody")


async def test_consume_stops_at_zero(open_account):
    await open_account("user-2", basic_analyses=1)
    balance = await credits_service.consume("user-2", CreditKind.BASIC_ANALYSES)
    assert balance.basic_analyses == 0
    with pytest.raises(InsufficientCreditError) as exc_info:
        await credits_service.consume("user-2", CreditKind.BASIC_ANALYSES)
    assert exc_info.value.kind == "basic_analyses"
    assert exc_info.value.status_code == 402
    assert (await credits_service.get_balance("user-2")).basic_analyses == 0


async def test_concurrent_consume_never_goes_negative(open_account):
    await open_account("user-3", spins=3)
    results = await asyncio.gather(
        *(credits_service.consume("user-3", CreditKind.SPINS) for _ in range(10)),
        return_exceptions=True,
    )
    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, InsufficientCreditError)]
    assert len(successes) == 3
    assert len(failures) == 7
    assert (await credits_service.get_balance("user-3")).spins == 0


async def test_consume_unknown_user():
    with pytest.raises(NotFoundError):
        await credits_service.consume("nobody", CreditKind.SPINS)


async def test_grant_adds_amount(open_account):
    await open_account("user-4")
    balance = await credits_service.grant("user-4", CreditKind.PRO_ANALYSES, 3)
    assert balance.pro_analyses == 3


@pytest.mark.parametrize("amount", [0, -2])
async def test_grant_rejects_non_positive_amount(open_account, amount):
    await open_account("user-4")
    with pytest.raises(InvalidInputError):
        await credits_service.grant("user-4", CreditKind.SPINS, amount)


async def test_transfer_moves_one_unit(open_account):
    await open_account("user-5", spins=1)
    balance = await credits_service.transfer("user-5", CreditKind.SPINS, CreditKind.PRO_ANALYSES, 1)
    assert (balance.spins, balance.pro_analyses) == (0, 1)


async def test_transfer_without_source_changes_nothing(open_account):
    await open_account("user-6", basic_analyses=2)
    with pytest.raises(InsufficientCreditError):
        await credits_service.transfer("user-6", CreditKind.SPINS, CreditKind.BASIC_ANALYSES, 1)
    balance = await credits_service.get_balance("user-6")
    assert (balance.basic_analyses, balance.spins) == (2, 0)


async def test_transfer_into_same_kind_is_rejected(open_account):
    await open_account("user-7", spins=1)
    with pytest.raises(InvalidInputError):
        await credits_service.transfer("user-7", CreditKind.SPINS, CreditKind.SPINS, 1)
