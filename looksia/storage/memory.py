import asyncio
from collections import defaultdict
from typing import Awaitable, Callable, TypeVar

from looksia.core.exceptions import ConflictError, InsufficientCreditError, NotFoundError
from looksia.models.ledger import (
    AnalysisRecord,
    Balance,
    CreditKind,
    SpinRecord,
    Transaction,
    TransactionStatus,
    utcnow,
)
from looksia.storage.base import LedgerSession, LedgerStore, short_kind

T = TypeVar("T")


class _MemorySession(LedgerSession):
    """Stages every change; the store applies them only after the work returns."""

    def __init__(self, store: "MemoryLedgerStore", user_id: str) -> None:
        super().__init__(user_id)
        self._store = store
        self._balance = store._balances.get(user_id)
        self._spins: list[SpinRecord] = []
        self._analyses: list[AnalysisRecord] = []
        self._transactions: dict[str, Transaction] = {}

    async def balance(self) -> Balance:
        if self._balance is None:
            raise NotFoundError("Credit account not found")
        return self._balance

    async def apply(self, deltas: dict[CreditKind, int]) -> Balance:
        current = await self.balance()
        try:
            self._balance = current.with_deltas(deltas)
        except ValueError:
            raise InsufficientCreditError(short_kind(current, deltas).value) from None
        return self._balance

    def _check_key(self, records, key: str | None) -> None:
        if key is not None and any(r.idempotency_key == key for r in records):
            raise ConflictError("Duplicate idempotency key", details={"idempotency_key": key})

    async def add_spin(self, record: SpinRecord) -> None:
        self._check_key(self._all_spins(), record.idempotency_key)
        self._spins.append(record)

    async def add_analysis(self, record: AnalysisRecord) -> None:
        self._check_key(self._all_analyses(), record.idempotency_key)
        self._analyses.append(record)

    async def add_transaction(self, record: Transaction) -> None:
        self._check_key(self._all_transactions(), record.idempotency_key)
        self._transactions[record.id] = record

    def _all_spins(self) -> list[SpinRecord]:
        return self._store._spins[self.user_id] + self._spins

    def _all_analyses(self) -> list[AnalysisRecord]:
        return self._store._analyses[self.user_id] + self._analyses

    def _all_transactions(self) -> list[Transaction]:
        merged = dict(self._store._transactions[self.user_id])
        merged.update(self._transactions)
        return list(merged.values())

    async def find_spin(self, idempotency_key: str) -> SpinRecord | None:
        return next((r for r in self._all_spins() if r.idempotency_key == idempotency_key), None)

    async def find_analysis(self, idempotency_key: str) -> AnalysisRecord | None:
        return next((r for r in self._all_analyses() if r.idempotency_key == idempotency_key), None)

    async def find_transaction(self, idempotency_key: str) -> Transaction | None:
        return next((t for t in self._all_transactions() if t.idempotency_key == idempotency_key), None)

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        if transaction_id in self._transactions:
            return self._transactions[transaction_id]
        return self._store._transactions[self.user_id].get(transaction_id)

    async def set_transaction_status(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        status: TransactionStatus,
    ) -> Transaction | None:
        current = await self.get_transaction(transaction_id)
        if current is None or current.status != expected:
            return None
        updated = current.model_copy(update={"status": status, "updated_at": utcnow()})
        self._transactions[transaction_id] = updated
        return updated

    def commit(self) -> None:
        if self._balance is not None:
            self._store._balances[self.user_id] = self._balance
        self._store._spins[self.user_id].extend(self._spins)
        self._store._analyses[self.user_id].extend(self._analyses)
        self._store._transactions[self.user_id].update(self._transactions)


class MemoryLedgerStore(LedgerStore):
    """
    Single-process ledger. Units of work for one user are serialised by a per-user
    lock; staged changes are applied only when the work returns without raising.
    Suitable for development and tests, not for multiple workers.
    """

    def __init__(self) -> None:
        self._balances: dict[str, Balance] = {}
        self._spins: defaultdict[str, list[SpinRecord]] = defaultdict(list)
        self._analyses: defaultdict[str, list[AnalysisRecord]] = defaultdict(list)
        self._transactions: defaultdict[str, dict[str, Transaction]] = defaultdict(dict)
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def open_account(self, starting: Balance) -> Balance:
        async with self._locks[starting.user_id]:
            return self._balances.setdefault(starting.user_id, starting)

    async def get_balance(self, user_id: str) -> Balance | None:
        return self._balances.get(user_id)

    async def run(self, user_id: str, work: Callable[[LedgerSession], Awaitable[T]]) -> T:
        async with self._locks[user_id]:
            session = _MemorySession(self, user_id)
            result = await work(session)
            session.commit()
            return result

    async def list_spins(self, user_id: str, limit: int, offset: int) -> list[SpinRecord]:
        return list(reversed(self._spins[user_id]))[offset:offset + limit]

    async def list_analyses(self, user_id: str, limit: int, offset: int) -> list[AnalysisRecord]:
        return list(reversed(self._analyses[user_id]))[offset:offset + limit]

    async def list_transactions(self, user_id: str, limit: int, offset: int) -> list[Transaction]:
        newest_first = list(reversed(self._transactions[user_id].values()))
        return newest_first[offset:offset + limit]
