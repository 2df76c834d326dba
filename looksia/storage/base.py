from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Awaitable, Callable, TypeVar

from looksia.core.config import get_settings
from looksia.models.ledger import (
    AnalysisRecord,
    Balance,
    CreditKind,
    SpinRecord,
    Transaction,
    TransactionStatus,
)

T = TypeVar("T")


def short_kind(balance: Balance, deltas: dict[CreditKind, int]) -> CreditKind:
    """First counter that cannot absorb its negative delta."""
    for kind, delta in deltas.items():
        if delta < 0 and balance.get(kind) < -delta:
            return kind
    # Balance moved between the failed update and this read
    return next(kind for kind, delta in deltas.items() if delta < 0)


class LedgerSession(ABC):
    """
    One user's rows inside a unit of work.
    Nothing done through a session is visible to others until the unit commits,
    and nothing is kept if the unit raises.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id

    @abstractmethod
    async def balance(self) -> Balance:
        """Current balance as seen by this unit of work; NotFoundError if no account."""
        ...

    @abstractmethod
    async def apply(self, deltas: dict[CreditKind, int]) -> Balance:
        """
        Apply signed deltas in one conditional update and return the new balance.
        Raises InsufficientCreditError (and changes nothing) if any counter would go negative.
        """
        ...

    async def consume(self, kind: CreditKind) -> Balance:
        return await self.apply({kind: -1})

    async def grant(self, kind: CreditKind, amount: int) -> Balance:
        return await self.apply({kind: amount})

    async def transfer(self, consume_kind: CreditKind, grant_kind: CreditKind, amount: int) -> Balance:
        return await self.apply({consume_kind: -1, grant_kind: amount})

    @abstractmethod
    async def add_spin(self, record: SpinRecord) -> None:
        ...

    @abstractmethod
    async def add_analysis(self, record: AnalysisRecord) -> None:
        ...

    @abstractmethod
    async def add_transaction(self, record: Transaction) -> None:
        ...

    @abstractmethod
    async def find_spin(self, idempotency_key: str) -> SpinRecord | None:
        ...

    @abstractmethod
    async def find_analysis(self, idempotency_key: str) -> AnalysisRecord | None:
        ...

    @abstractmethod
    async def find_transaction(self, idempotency_key: str) -> Transaction | None:
        ...

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        ...

    @abstractmethod
    async def set_transaction_status(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        status: TransactionStatus,
    ) -> Transaction | None:
        """Move status only if it is currently `expected`; return the updated transaction or None."""
        ...


class LedgerStore(ABC):
    async def init(self) -> None:
        """Connect / create indexes. Called once at startup."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def open_account(self, starting: Balance) -> Balance:
        """Create the balance row with `starting` counts unless it exists; return the stored balance."""
        ...

    @abstractmethod
    async def get_balance(self, user_id: str) -> Balance | None:
        ...

    @abstractmethod
    async def run(self, user_id: str, work: Callable[[LedgerSession], Awaitable[T]]) -> T:
        """
        Run `work` as one atomic unit over the user's rows.
        Transient conflicts re-run `work` (bounded by ledger_max_retries) and then
        raise ConcurrentUpdateConflict; other storage failures raise PersistenceError.
        """
        ...

    @abstractmethod
    async def list_spins(self, user_id: str, limit: int, offset: int) -> list[SpinRecord]:
        ...

    @abstractmethod
    async def list_analyses(self, user_id: str, limit: int, offset: int) -> list[AnalysisRecord]:
        ...

    @abstractmethod
    async def list_transactions(self, user_id: str, limit: int, offset: int) -> list[Transaction]:
        ...


@lru_cache
def get_ledger_store() -> LedgerStore:
    settings = get_settings()
    if settings.ledger_backend == "memory":
        from looksia.storage.memory import MemoryLedgerStore
        return MemoryLedgerStore()
    from looksia.storage.mongo import MongoLedgerStore
    return MongoLedgerStore()
