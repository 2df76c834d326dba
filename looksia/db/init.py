import certifi
from beanie import init_beanie
from pymongo import AsyncMongoClient

from looksia.core.config import get_settings
from looksia.models.documents import AnalysisHistoryEntry, SpinHistoryEntry, TransactionEntry, UserCredits

DOCUMENT_MODELS = [
    UserCredits,
    SpinHistoryEntry,
    TransactionEntry,
    AnalysisHistoryEntry,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client(uri: str | None = None) -> AsyncMongoClient:
    uri = uri or get_settings().mongodb_uri
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncMongoClient(uri, tz_aware=True, **kwargs)


async def init_db(client: AsyncMongoClient | None = None, db_name: str | None = None) -> AsyncMongoClient:
    """Bind the ledger documents to the configured database; return the client (needed for sessions)."""
    settings = get_settings()
    client = client or create_client()
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
