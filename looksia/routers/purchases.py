from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from looksia.core.security import require_idempotency_key
from looksia.deps import get_current_user_id
from looksia.models.ledger import Transaction
from looksia.routers.credits import balance_out
from looksia.services import credits as credits_service
from looksia.services import journal
from looksia.services import purchases as purchases_service

router = APIRouter()


class PurchaseRequest(BaseModel):
    product_type: str
    quantity: int = Field(gt=0)


def transaction_out(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "product_type": tx.product_type.value,
        "quantity": tx.quantity,
        "amount": str(tx.amount),
        "currency": tx.currency,
        "status": tx.status.value,
        "created_at": tx.created_at.isoformat(),
    }


@router.get("/catalog")
async def catalog():
    """Credit packs on sale and their prices."""
    return {"products": purchases_service.get_catalog()}


@router.post("")
async def purchase(
    body: PurchaseRequest,
    user_id: str = Depends(get_current_user_id),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Record a completed purchase and grant its credits. Idempotency-Key required; repeats grant nothing."""
    key = require_idempotency_key(idempotency_key)
    tx, created = await purchases_service.purchase(user_id, body.product_type, body.quantity, key)
    balance = await credits_service.get_balance(user_id)
    return {"transaction": transaction_out(tx), "created": created, "balance": balance_out(balance)}


@router.get("")
async def purchase_history(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Return transactions for current user (newest first)."""
    page = await journal.list_transactions(user_id, limit, offset)
    return {
        "transactions": [transaction_out(t) for t in page.items],
        "limit": page.limit,
        "offset": page.offset,
        "next_offset": page.next_offset,
    }
