"""Spin flow: trade one spin token for a weighted-random analysis credit."""

from enum import Enum
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph

from looksia.core.config import get_settings
from looksia.core.logging import get_logger
from looksia.models.ledger import Balance, CreditKind, PrizeType, SpinRecord
from looksia.services.rewards import RandomSource, draw, reward_table, system_source
from looksia.storage.base import LedgerSession, get_ledger_store

log = get_logger(__name__)


class SpinState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class SpinFlowState(TypedDict):
    user_id: str
    idempotency_key: str | None
    source: RandomSource
    state: SpinState
    prize_type: PrizeType | None
    balance: Balance | None
    spin: SpinRecord | None
    replayed: bool


async def _start(state: SpinFlowState) -> dict:
    return {"state": SpinState.RESOLVING}


async def _resolve(state: SpinFlowState) -> dict:
    """One unit of work: spins -1, prize +1, SpinRecord appended. Resolved only once it commits."""
    user_id = state["user_id"]
    key = state["idempotency_key"]
    table = reward_table(get_settings().spin_pro_probability)

    async def work(session: LedgerSession) -> tuple[SpinRecord, Balance, bool]:
        if key:
            existing = await session.find_spin(key)
            if existing:
                return existing, await session.balance(), True
        prize = draw(table, state["source"])
        balance = await session.transfer(CreditKind.SPINS, prize.credit_kind, 1)
        record = SpinRecord(user_id=user_id, prize_type=prize, idempotency_key=key)
        await session.add_spin(record)
        return record, balance, False

    record, balance, replayed = await get_ledger_store().run(user_id, work)
    if replayed:
        log.info("spin_replayed", user_id=user_id, spin_id=record.id, prize_type=record.prize_type.value)
    else:
        log.info(
            "spin_resolved",
            user_id=user_id,
            spin_id=record.id,
            prize_type=record.prize_type.value,
            spins_left=balance.spins,
        )
    return {
        "state": SpinState.RESOLVED,
        "prize_type": record.prize_type,
        "balance": balance,
        "spin": record,
        "replayed": replayed,
    }


def build_spin_graph():
    builder = StateGraph(SpinFlowState)
    builder.add_node("start", _start)
    builder.add_node("resolve", _resolve)
    builder.add_edge(START, "start")
    builder.add_edge("start", "resolve")
    builder.add_edge("resolve", END)
    return builder.compile()


async def run_spin(
    user_id: str,
    source: RandomSource | None = None,
    idempotency_key: str | None = None,
) -> dict[str, Any]:
    """
    Run one spin. Returns {state, prize_type, balance, spin, replayed}.
    Raises InsufficientCreditError when no spins are left; the ledger is untouched in that case.
    """
    graph = build_spin_graph()
    initial: SpinFlowState = {
        "user_id": user_id,
        "idempotency_key": idempotency_key,
        "source": source or system_source(),
        "state": SpinState.IDLE,
        "prize_type": None,
        "balance": None,
        "spin": None,
        "replayed": False,
    }
    result = await graph.ainvoke(initial)
    return {
        "state": result["state"],
        "prize_type": result["prize_type"],
        "balance": result["balance"],
        "spin": result["spin"],
        "replayed": result["replayed"],
    }
