from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel

from looksia.core.security import require_idempotency_key
from looksia.deps import get_current_user_id
from looksia.models.ledger import AnalysisRecord
from looksia.routers.credits import balance_out
from looksia.services import journal
from looksia.workflows.analysis_flow import run_analysis

router = APIRouter()


class AnalysisRequest(BaseModel):
    analysis_type: str
    image: str  # base64 or data:image/...;base64, URL


def analysis_out(record: AnalysisRecord) -> dict:
    return {
        "id": record.id,
        "analysis_type": record.analysis_type.value,
        "score": record.score,
        "result": record.result_data,
        "created_at": record.created_at.isoformat(),
    }


@router.post("")
async def analyze(
    body: AnalysisRequest,
    user_id: str = Depends(get_current_user_id),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Score a face photo and charge one analysis credit of the requested type. Idempotency-Key required."""
    key = require_idempotency_key(idempotency_key)
    outcome = await run_analysis(user_id, body.analysis_type, body.image, idempotency_key=key)
    return {
        "analysis": analysis_out(outcome["analysis"]),
        "balance": balance_out(outcome["balance"]),
        "replayed": outcome["replayed"],
    }


@router.get("")
async def analysis_history(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Return analyses for current user (newest first)."""
    page = await journal.list_analyses(user_id, limit, offset)
    return {
        "analyses": [analysis_out(a) for a in page.items],
        "limit": page.limit,
        "offset": page.offset,
        "next_offset": page.next_offset,
    }
