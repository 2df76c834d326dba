"""MongoDB documents backing the ledger (mongo store backend)."""

from datetime import datetime
from typing import Any

from beanie import DecimalAnnotation, Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from looksia.models.ledger import (
    AnalysisRecord,
    AnalysisType,
    Balance,
    PrizeType,
    ProductType,
    SpinRecord,
    Transaction,
    TransactionStatus,
    new_id,
    utcnow,
)


def _idempotency_index() -> IndexModel:
    # Unique per user, only where a key was supplied
    return IndexModel(
        [("user_id", ASCENDING), ("idempotency_key", ASCENDING)],
        unique=True,
        partialFilterExpression={"idempotency_key": {"$type": "string"}},
    )


class UserCredits(Document):
    """Balance row; _id is the user id."""
    id: str
    basic_analyses: int = 0
    pro_analyses: int = 0
    spins: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "user_credits"

    def to_balance(self) -> Balance:
        return Balance(
            user_id=self.id,
            basic_analyses=self.basic_analyses,
            pro_analyses=self.pro_analyses,
            spins=self.spins,
        )


class SpinHistoryEntry(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    prize_type: PrizeType
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "spin_history"
        indexes = [
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            _idempotency_index(),
        ]

    @classmethod
    def from_record(cls, record: SpinRecord) -> "SpinHistoryEntry":
        return cls(**record.model_dump())

    def to_record(self) -> SpinRecord:
        return SpinRecord(**self.model_dump())


class TransactionEntry(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    product_type: ProductType
    quantity: int
    amount: DecimalAnnotation
    currency: str = "BRL"
    status: TransactionStatus
    idempotency_key: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "transactions"
        indexes = [
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            _idempotency_index(),
        ]

    @classmethod
    def from_record(cls, record: Transaction) -> "TransactionEntry":
        return cls(**record.model_dump())

    def to_record(self) -> Transaction:
        return Transaction(**self.model_dump())


class AnalysisHistoryEntry(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    analysis_type: AnalysisType
    score: float
    result_data: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "analysis_history"
        indexes = [
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            _idempotency_index(),
        ]

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> "AnalysisHistoryEntry":
        return cls(**record.model_dump())

    def to_record(self) -> AnalysisRecord:
        return AnalysisRecord(**self.model_dump())
