"""
Analysis flow: validate -> replay -> precheck -> score -> commit.

The scorer runs outside any ledger transaction. Only the commit step touches
balances: it consumes one credit of the requested type and records the result
in one unit of work, so a failed scorer call never costs a credit.
"""

import base64
import binascii
import re
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph

from looksia.core.config import get_settings
from looksia.core.exceptions import (
    AnalysisNotBilledError,
    AppError,
    ConcurrentUpdateConflict,
    InsufficientCreditError,
    InvalidInputError,
    NotFoundError,
    PersistenceError,
)
from looksia.core.logging import get_logger
from looksia.models.ledger import AnalysisRecord, AnalysisType, Balance
from looksia.services.scorer import FaceScorer, get_scorer
from looksia.storage.base import LedgerSession, get_ledger_store

log = get_logger(__name__)

DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,(?P<data>.*)$", re.DOTALL)


class AnalysisState(TypedDict):
    user_id: str
    analysis_type: str
    image: str
    idempotency_key: str | None
    scorer: FaceScorer
    kind: AnalysisType | None
    result: dict[str, Any] | None
    record: AnalysisRecord | None
    balance: Balance | None
    replayed: bool
    error: AppError | None


def decode_image(image: str, max_bytes: int) -> bytes:
    """Accept raw base64 or a data:image/...;base64, URL. Returns the decoded bytes."""
    if not isinstance(image, str) or not image.strip():
        raise InvalidInputError("Image is required")
    payload = image.strip()
    match = DATA_URL_RE.match(payload)
    if match:
        payload = match.group("data")
    elif payload.startswith("data:"):
        raise InvalidInputError("Image must be a base64 data:image URL")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidInputError("Image is not valid base64") from None
    if not raw:
        raise InvalidInputError("Image is empty")
    if len(raw) > max_bytes:
        raise InvalidInputError("Image is too large", details={"max_bytes": max_bytes, "size": len(raw)})
    return raw


async def _validate(state: AnalysisState) -> dict:
    try:
        kind = AnalysisType(state["analysis_type"])
    except ValueError:
        return {"error": InvalidInputError("Unknown analysis type", details={"analysis_type": state["analysis_type"]})}
    try:
        decode_image(state["image"], get_settings().max_image_bytes)
    except InvalidInputError as e:
        return {"error": e}
    return {"kind": kind}


async def _replay(state: AnalysisState) -> dict:
    key = state["idempotency_key"]
    if not key:
        return {}

    async def work(session: LedgerSession) -> tuple[AnalysisRecord | None, Balance]:
        return await session.find_analysis(key), await session.balance()

    try:
        record, balance = await get_ledger_store().run(state["user_id"], work)
    except AppError as e:
        return {"error": e}
    if record is None:
        return {}
    log.info("analysis_replayed", user_id=state["user_id"], analysis_id=record.id)
    return {"record": record, "result": record.result_data, "balance": balance, "replayed": True}


async def _precheck(state: AnalysisState) -> dict:
    """Read-only early exit before paying for a scorer call. The commit step is authoritative."""
    kind = state["kind"].credit_kind
    try:
        balance = await get_ledger_store().get_balance(state["user_id"])
    except AppError as e:
        return {"error": e}
    if balance is None:
        return {"error": NotFoundError("Credit account not found")}
    if balance.get(kind) < 1:
        return {"error": InsufficientCreditError(kind.value)}
    return {}


async def _score(state: AnalysisState) -> dict:
    try:
        result = await state["scorer"].score(state["image"])
    except AppError as e:
        return {"error": e}
    return {"result": result.model_dump()}


async def _commit(state: AnalysisState) -> dict:
    user_id = state["user_id"]
    key = state["idempotency_key"]
    analysis_type = state["kind"]
    result = state["result"]

    async def work(session: LedgerSession) -> tuple[AnalysisRecord, Balance, bool]:
        if key:
            existing = await session.find_analysis(key)
            if existing:
                return existing, await session.balance(), True
        balance = await session.consume(analysis_type.credit_kind)
        record = AnalysisRecord(
            user_id=user_id,
            analysis_type=analysis_type,
            score=result["score"],
            result_data=result,
            idempotency_key=key,
        )
        await session.add_analysis(record)
        return record, balance, False

    try:
        record, balance, replayed = await get_ledger_store().run(user_id, work)
    except (PersistenceError, ConcurrentUpdateConflict) as e:
        log.error("analysis_not_billed", user_id=user_id, idempotency_key=key, error=e.code)
        not_billed = AnalysisNotBilledError(result, key)
        not_billed.__cause__ = e
        return {"error": not_billed}
    except AppError as e:
        return {"error": e}

    if replayed:
        log.info("analysis_replayed", user_id=user_id, analysis_id=record.id)
        return {"record": record, "result": record.result_data, "balance": balance, "replayed": True}
    log.info(
        "analysis_billed",
        user_id=user_id,
        analysis_id=record.id,
        analysis_type=analysis_type.value,
        score=record.score,
        remaining=balance.get(analysis_type.credit_kind),
    )
    return {"record": record, "balance": balance}


def _next_or_end(next_node: str):
    def route(state: AnalysisState) -> str:
        if state.get("error") is not None or state.get("replayed"):
            return END
        return next_node
    return route


def build_analysis_graph():
    builder = StateGraph(AnalysisState)
    builder.add_node("validate", _validate)
    builder.add_node("replay", _replay)
    builder.add_node("precheck", _precheck)
    builder.add_node("score", _score)
    builder.add_node("commit", _commit)
    builder.add_edge(START, "validate")
    builder.add_conditional_edges("validate", _next_or_end("replay"), ["replay", END])
    builder.add_conditional_edges("replay", _next_or_end("precheck"), ["precheck", END])
    builder.add_conditional_edges("precheck", _next_or_end("score"), ["score", END])
    builder.add_conditional_edges("score", _next_or_end("commit"), ["commit", END])
    builder.add_edge("commit", END)
    return builder.compile()


async def run_analysis(
    user_id: str,
    analysis_type: AnalysisType | str,
    image: str,
    idempotency_key: str | None = None,
    scorer: FaceScorer | None = None,
) -> dict[str, Any]:
    """
    Score an image and bill one credit of `analysis_type` for it.
    Returns {analysis, result, balance, replayed}; raises the AppError of the step that stopped the flow.
    """
    graph = build_analysis_graph()
    initial: AnalysisState = {
        "user_id": user_id,
        "analysis_type": analysis_type.value if isinstance(analysis_type, AnalysisType) else analysis_type,
        "image": image,
        "idempotency_key": idempotency_key,
        "scorer": scorer or get_scorer(),
        "kind": None,
        "result": None,
        "record": None,
        "balance": None,
        "replayed": False,
        "error": None,
    }
    state = await graph.ainvoke(initial)
    if state["error"] is not None:
        raise state["error"]
    return {
        "analysis": state["record"],
        "result": state["result"],
        "balance": state["balance"],
        "replayed": state["replayed"],
    }
