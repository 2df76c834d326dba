from fastapi import APIRouter, Depends

from looksia.deps import get_current_user_id
from looksia.models.ledger import Balance
from looksia.services import credits as credits_service

router = APIRouter()


def balance_out(balance: Balance) -> dict:
    return {
        "basic_analyses": balance.basic_analyses,
        "pro_analyses": balance.pro_analyses,
        "spins": balance.spins,
    }


@router.post("/account")
async def open_account(user_id: str = Depends(get_current_user_id)):
    """Open the credit account with the starting bonus; returns the existing balance if already open."""
    balance = await credits_service.open_account(user_id)
    return {"balance": balance_out(balance)}


@router.get("/balance")
async def credits_balance(user_id: str = Depends(get_current_user_id)):
    """Return current entitlement counts."""
    balance = await credits_service.get_balance(user_id)
    return {"balance": balance_out(balance)}
