from looksia.models.documents import AnalysisHistoryEntry, SpinHistoryEntry, TransactionEntry, UserCredits
from looksia.models.ledger import (
    AnalysisRecord,
    AnalysisType,
    Balance,
    CreditKind,
    PrizeType,
    ProductType,
    SpinRecord,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "UserCredits",
    "SpinHistoryEntry",
    "TransactionEntry",
    "AnalysisHistoryEntry",
    "AnalysisRecord",
    "AnalysisType",
    "Balance",
    "CreditKind",
    "PrizeType",
    "ProductType",
    "SpinRecord",
    "Transaction",
    "TransactionStatus",
]
