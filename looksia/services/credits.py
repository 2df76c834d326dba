"""Per-user entitlement balances: open, read, consume, grant, transfer."""

from looksia.core.config import get_settings
from looksia.core.exceptions import InvalidInputError, NotFoundError
from looksia.core.logging import get_logger
from looksia.models.ledger import Balance, CreditKind
from looksia.storage.base import LedgerSession, get_ledger_store

log = get_logger(__name__)


def starting_balance(user_id: str) -> Balance:
    s = get_settings()
    return Balance(
        user_id=user_id,
        basic_analyses=s.starting_basic_analyses,
        pro_analyses=s.starting_pro_analyses,
        spins=s.starting_spins,
    )


async def open_account(user_id: str) -> Balance:
    """Create the account with the starting bonus; an existing account is returned unchanged."""
    balance = await get_ledger_store().open_account(starting_balance(user_id))
    log.info("account_opened", user_id=user_id, **_counts(balance))
    return balance


async def get_balance(user_id: str) -> Balance:
    balance = await get_ledger_store().get_balance(user_id)
    if balance is None:
        raise NotFoundError("Credit account not found")
    return balance


async def consume(user_id: str, kind: CreditKind) -> Balance:
    """Take one unit of `kind`. InsufficientCreditError (nothing changed) if the counter is 0."""

    async def work(session: LedgerSession) -> Balance:
        return await session.consume(kind)

    balance = await get_ledger_store().run(user_id, work)
    log.info("credit_consumed", user_id=user_id, kind=kind.value, remaining=balance.get(kind))
    return balance


async def grant(user_id: str, kind: CreditKind, amount: int) -> Balance:
    if amount < 1:
        raise InvalidInputError("Grant amount must be at least 1", details={"amount": amount})

    async def work(session: LedgerSession) -> Balance:
        return await session.grant(kind, amount)

    balance = await get_ledger_store().run(user_id, work)
    log.info("credit_granted", user_id=user_id, kind=kind.value, amount=amount, total=balance.get(kind))
    return balance


async def transfer(user_id: str, consume_kind: CreditKind, grant_kind: CreditKind, amount: int) -> Balance:
    """Take one `consume_kind` and add `amount` of `grant_kind` as one update."""
    if amount < 1:
        raise InvalidInputError("Transfer amount must be at least 1", details={"amount": amount})
    if consume_kind == grant_kind:
        raise InvalidInputError("Cannot transfer a credit kind into itself", details={"kind": consume_kind.value})

    async def work(session: LedgerSession) -> Balance:
        return await session.transfer(consume_kind, grant_kind, amount)

    balance = await get_ledger_store().run(user_id, work)
    log.info(
        "credit_transferred",
        user_id=user_id,
        consumed=consume_kind.value,
        granted=grant_kind.value,
        amount=amount,
    )
    return balance


def _counts(balance: Balance) -> dict[str, int]:
    return {kind.value: balance.get(kind) for kind in CreditKind}
