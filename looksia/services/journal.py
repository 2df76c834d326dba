"""History reads over the append-only spin, analysis and purchase journals (newest first)."""

from looksia.core.pagination import Page, paginate
from looksia.models.ledger import AnalysisRecord, SpinRecord, Transaction
from looksia.storage.base import get_ledger_store


async def list_spins(user_id: str, limit: int = 50, offset: int = 0) -> Page[SpinRecord]:
    limit, offset = paginate(limit, offset)
    items = await get_ledger_store().list_spins(user_id, limit, offset)
    return Page[SpinRecord](items=items, limit=limit, offset=offset)


async def list_analyses(user_id: str, limit: int = 50, offset: int = 0) -> Page[AnalysisRecord]:
    limit, offset = paginate(limit, offset)
    items = await get_ledger_store().list_analyses(user_id, limit, offset)
    return Page[AnalysisRecord](items=items, limit=limit, offset=offset)


async def list_transactions(user_id: str, limit: int = 50, offset: int = 0) -> Page[Transaction]:
    limit, offset = paginate(limit, offset)
    items = await get_ledger_store().list_transactions(user_id, limit, offset)
    return Page[Transaction](items=items, limit=limit, offset=offset)
