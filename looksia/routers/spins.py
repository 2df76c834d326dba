from fastapi import APIRouter, Depends, Header, Query

from looksia.core.security import optional_idempotency_key
from looksia.deps import get_current_user_id
from looksia.models.ledger import SpinRecord
from looksia.routers.credits import balance_out
from looksia.services import journal
from looksia.workflows.spin_flow import run_spin

router = APIRouter()


def spin_out(spin: SpinRecord) -> dict:
    return {
        "id": spin.id,
        "prize_type": spin.prize_type.value,
        "created_at": spin.created_at.isoformat(),
    }


@router.post("")
async def spin(
    user_id: str = Depends(get_current_user_id),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Spend one spin token on the prize wheel. Optional Idempotency-Key replays a previous spin."""
    key = optional_idempotency_key(idempotency_key)
    outcome = await run_spin(user_id, idempotency_key=key)
    return {
        "state": outcome["state"].value,
        "prize_type": outcome["prize_type"].value,
        "balance": balance_out(outcome["balance"]),
        "spin": spin_out(outcome["spin"]),
        "replayed": outcome["replayed"],
    }


@router.get("")
async def spin_history(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Return spins for current user (newest first)."""
    page = await journal.list_spins(user_id, limit, offset)
    return {
        "spins": [spin_out(s) for s in page.items],
        "limit": page.limit,
        "offset": page.offset,
        "next_offset": page.next_offset,
    }
