from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, TypeVar

from beanie import UpdateResponse
from pymongo import AsyncMongoClient
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.errors import DuplicateKeyError, PyMongoError

from looksia.core.config import get_settings
from looksia.core.exceptions import (
    ConcurrentUpdateConflict,
    InsufficientCreditError,
    NotFoundError,
    PersistenceError,
)
from looksia.core.logging import get_logger
from looksia.db.init import init_db
from looksia.models.documents import AnalysisHistoryEntry, SpinHistoryEntry, TransactionEntry, UserCredits
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

log = get_logger(__name__)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as e:
        log.error("ledger_storage_error", operation=operation, error=type(e).__name__, reason=str(e)[:500])
        raise PersistenceError(details={"operation": operation}) from e


class _MongoSession(LedgerSession):
    def __init__(self, user_id: str, session: AsyncClientSession) -> None:
        super().__init__(user_id)
        self.session = session

    async def balance(self) -> Balance:
        doc = await UserCredits.find_one(UserCredits.id == self.user_id, session=self.session)
        if not doc:
            raise NotFoundError("Credit account not found")
        return doc.to_balance()

    async def apply(self, deltas: dict[CreditKind, int]) -> Balance:
        # Guard and increment in the same statement: {$gte: n} on every counter being drawn down
        query: dict = {"_id": self.user_id}
        for kind, delta in deltas.items():
            if delta < 0:
                query[kind.value] = {"$gte": -delta}
        doc = await UserCredits.find_one(query, session=self.session).update(
            {
                "$inc": {kind.value: delta for kind, delta in deltas.items()},
                "$set": {"updated_at": utcnow()},
            },
            session=self.session,
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if doc is None:
            current = await self.balance()
            raise InsufficientCreditError(short_kind(current, deltas).value)
        return doc.to_balance()

    async def add_spin(self, record: SpinRecord) -> None:
        await SpinHistoryEntry.from_record(record).insert(session=self.session)

    async def add_analysis(self, record: AnalysisRecord) -> None:
        await AnalysisHistoryEntry.from_record(record).insert(session=self.session)

    async def add_transaction(self, record: Transaction) -> None:
        await TransactionEntry.from_record(record).insert(session=self.session)

    async def find_spin(self, idempotency_key: str) -> SpinRecord | None:
        entry = await SpinHistoryEntry.find_one(
            SpinHistoryEntry.user_id == self.user_id,
            SpinHistoryEntry.idempotency_key == idempotency_key,
            session=self.session,
        )
        return entry.to_record() if entry else None

    async def find_analysis(self, idempotency_key: str) -> AnalysisRecord | None:
        entry = await AnalysisHistoryEntry.find_one(
            AnalysisHistoryEntry.user_id == self.user_id,
            AnalysisHistoryEntry.idempotency_key == idempotency_key,
            session=self.session,
        )
        return entry.to_record() if entry else None

    async def find_transaction(self, idempotency_key: str) -> Transaction | None:
        entry = await TransactionEntry.find_one(
            TransactionEntry.user_id == self.user_id,
            TransactionEntry.idempotency_key == idempotency_key,
            session=self.session,
        )
        return entry.to_record() if entry else None

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        entry = await TransactionEntry.find_one(
            TransactionEntry.id == transaction_id,
            TransactionEntry.user_id == self.user_id,
            session=self.session,
        )
        return entry.to_record() if entry else None

    async def set_transaction_status(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        status: TransactionStatus,
    ) -> Transaction | None:
        entry = await TransactionEntry.find_one(
            {"_id": transaction_id, "user_id": self.user_id, "status": expected.value},
            session=self.session,
        ).update(
            {"$set": {"status": status.value, "updated_at": utcnow()}},
            session=self.session,
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return entry.to_record() if entry else None


class MongoLedgerStore(LedgerStore):
    """Ledger over MongoDB multi-document transactions (requires a replica set)."""

    def __init__(self, client: AsyncMongoClient | None = None, db_name: str | None = None) -> None:
        self._client = client
        self._db_name = db_name
        self._initialised = False

    async def init(self) -> None:
        with _storage_errors("init"):
            self._client = await init_db(self._client, self._db_name)
        self._initialised = True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._initialised = False

    @property
    def client(self) -> AsyncMongoClient:
        if not self._initialised or self._client is None:
            raise PersistenceError("Ledger store is not initialised")
        return self._client

    async def open_account(self, starting: Balance) -> Balance:
        now = utcnow()
        with _storage_errors("open_account"):
            try:
                await UserCredits.get_pymongo_collection().update_one(
                    {"_id": starting.user_id},
                    {
                        "$setOnInsert": {
                            "basic_analyses": starting.basic_analyses,
                            "pro_analyses": starting.pro_analyses,
                            "spins": starting.spins,
                            "created_at": now,
                            "updated_at": now,
                        }
                    },
                    upsert=True,
                )
            except DuplicateKeyError:
                # Concurrent open for the same user; the other upsert created the row
                pass
        balance = await self.get_balance(starting.user_id)
        if balance is None:
            raise PersistenceError("Credit account was not created")
        return balance

    async def get_balance(self, user_id: str) -> Balance | None:
        with _storage_errors("get_balance"):
            doc = await UserCredits.get(user_id)
        return doc.to_balance() if doc else None

    async def run(self, user_id: str, work: Callable[[LedgerSession], Awaitable[T]]) -> T:
        attempts = get_settings().ledger_max_retries
        client = self.client
        for attempt in range(1, attempts + 1):
            try:
                async with client.start_session() as session:
                    async with await session.start_transaction():
                        return await work(_MongoSession(user_id, session))
            except DuplicateKeyError:
                # Another request inserted the same idempotency key first; re-run to observe it
                log.warning("ledger_conflict_retry", user_id=user_id, attempt=attempt, reason="duplicate_key")
            except PyMongoError as e:
                if not e.has_error_label("TransientTransactionError"):
                    log.error("ledger_storage_error", user_id=user_id, error=type(e).__name__, reason=str(e)[:500])
                    raise PersistenceError(details={"operation": "transaction"}) from e
                log.warning("ledger_conflict_retry", user_id=user_id, attempt=attempt, reason="transient")
        log.warning("ledger_conflict_exhausted", user_id=user_id, attempts=attempts)
        raise ConcurrentUpdateConflict(attempts=attempts)

    async def list_spins(self, user_id: str, limit: int, offset: int) -> list[SpinRecord]:
        with _storage_errors("list_spins"):
            entries = (
                await SpinHistoryEntry.find(SpinHistoryEntry.user_id == user_id)
                .sort(-SpinHistoryEntry.created_at)
                .skip(offset)
                .limit(limit)
                .to_list()
            )
        return [e.to_record() for e in entries]

    async def list_analyses(self, user_id: str, limit: int, offset: int) -> list[AnalysisRecord]:
        with _storage_errors("list_analyses"):
            entries = (
                await AnalysisHistoryEntry.find(AnalysisHistoryEntry.user_id == user_id)
                .sort(-AnalysisHistoryEntry.created_at)
                .skip(offset)
                .limit(limit)
                .to_list()
            )
        return [e.to_record() for e in entries]

    async def list_transactions(self, user_id: str, limit: int, offset: int) -> list[Transaction]:
        with _storage_errors("list_transactions"):
            entries = (
                await TransactionEntry.find(TransactionEntry.user_id == user_id)
                .sort(-TransactionEntry.created_at)
                .skip(offset)
                .limit(limit)
                .to_list()
            )
        return [e.to_record() for e in entries]
