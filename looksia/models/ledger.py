"""Ledger value types shared by every store backend."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditKind(str, Enum):
    BASIC_ANALYSES = "basic_analyses"
    PRO_ANALYSES = "pro_analyses"
    SPINS = "spins"


class AnalysisType(str, Enum):
    BASIC = "basic"
    PRO = "pro"

    @property
    def credit_kind(self) -> CreditKind:
        return CreditKind.BASIC_ANALYSES if self is AnalysisType.BASIC else CreditKind.PRO_ANALYSES


class PrizeType(str, Enum):
    BASIC = "basic"
    PRO = "pro"

    @property
    def credit_kind(self) -> CreditKind:
        return CreditKind.BASIC_ANALYSES if self is PrizeType.BASIC else CreditKind.PRO_ANALYSES


class ProductType(str, Enum):
    SPINS = "spins"
    PRO_ANALYSES = "pro_analyses"

    @property
    def credit_kind(self) -> CreditKind:
        return CreditKind(self.value)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Balance(BaseModel):
    """Point-in-time entitlement counts for one user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    basic_analyses: int = Field(default=0, ge=0)
    pro_analyses: int = Field(default=0, ge=0)
    spins: int = Field(default=0, ge=0)

    def get(self, kind: CreditKind) -> int:
        return getattr(self, kind.value)

    def with_deltas(self, deltas: dict[CreditKind, int]) -> "Balance":
        """Return a new balance with signed deltas applied; raise ValueError if any counter would go negative."""
        values = {kind.value: self.get(kind) for kind in CreditKind}
        for kind, delta in deltas.items():
            values[kind.value] += delta
            if values[kind.value] < 0:
                raise ValueError(f"{kind.value} would go negative")
        return Balance(user_id=self.user_id, **values)


class SpinRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    prize_type: PrizeType
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Transaction(BaseModel):
    """One purchase attempt. Only status (pending -> completed | failed) ever moves."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    product_type: ProductType
    quantity: int = Field(gt=0)
    amount: Decimal
    currency: str = "BRL"
    status: TransactionStatus
    idempotency_key: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AnalysisRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    analysis_type: AnalysisType
    score: float = Field(ge=0, le=10)
    result_data: dict[str, Any]
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
