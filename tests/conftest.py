import base64
import os
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process ledger for tests; set before any looksia import reads settings
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("MONGODB_DB_NAME", "looksia_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("SCORER_URL", "http://scorer.test/analyze-face")

from looksia.core.config import get_settings  # noqa: E402
from looksia.models.ledger import Balance  # noqa: E402
from looksia.services.scorer import FaceScorer, get_scorer  # noqa: E402
from looksia.storage.base import get_ledger_store  # noqa: E402

IMAGE_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nnot-really-a-png").decode()

SCORE_BODY = {
    "score": 7.4,
    "label": "Atraente",
    "symmetry": 8,
    "proportions": 7,
    "jawline": 7.5,
    "eyes": 8,
    "skin": 6.5,
    "harmony": 7,
    "insights": ["Olhos expressivos", "Boa simetria", "Pele uniforme", "Sorriso harmonioso"],
    "weaknesses": ["Mandíbula pouco definida"],
    "recommendations": ["Hidratação diária", "Corte degradê", "Barba por fazer", "Protetor solar"],
}


@pytest.fixture(autouse=True)
def fresh_ledger():
    """Every test starts with fresh settings and an empty in-memory ledger."""
    get_settings.cache_clear()
    get_ledger_store.cache_clear()
    get_scorer.cache_clear()
    yield
    get_settings.cache_clear()
    get_ledger_store.cache_clear()
    get_scorer.cache_clear()


@pytest.fixture
def open_account() -> Callable:
    """Create an account with explicit counts, bypassing the starting bonus."""

    async def _open(user_id: str, basic_analyses: int = 0, pro_analyses: int = 0, spins: int = 0) -> Balance:
        return await get_ledger_store().open_account(
            Balance(user_id=user_id, basic_analyses=basic_analyses, pro_analyses=pro_analyses, spins=spins)
        )

    return _open


class ScorerStub:
    """FaceScorer over an httpx.MockTransport; counts calls."""

    def __init__(self, status_code: int = 200, body: dict | None = None, exc: Exception | None = None):
        self.calls = 0
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.body = SCORE_BODY if body is None else body
        self.exc = exc
        self.scorer = FaceScorer(
            get_settings().scorer_url,
            api_key="scorer-key",
            timeout_seconds=2.0,
            transport=httpx.MockTransport(self._handle),
        )

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def scorer_stub() -> Callable[..., ScorerStub]:
    return ScorerStub


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from looksia.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def login(client: AsyncClient, user_id: str) -> None:
    from looksia.core.security import create_session_cookie
    from looksia.deps import SESSION_COOKIE_NAME
    client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie({"user_id": user_id}))
