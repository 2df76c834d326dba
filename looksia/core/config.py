from functools import lru_cache
from typing import Any, List, Literal

import orjson
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ("http://localhost:3000", "http://localhost:5173")


def _parse_cors_origins(raw: str | None) -> List[str]:
    """Comma-separated origins, or a JSON list; falls back to the local dev origins."""
    text = (raw or "").strip()
    origins: list[Any] = []
    if text.startswith("["):
        try:
            origins = orjson.loads(text)
        except orjson.JSONDecodeError:
            origins = []
    elif text:
        origins = text.split(",")
    cleaned = [o.strip() for o in origins if isinstance(o, str) and o.strip()]
    return cleaned or list(_DEFAULT_CORS)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="looksia", alias="MONGODB_DB_NAME")

    # Ledger store: "mongo" (transactions, needs a replica set) or "memory" (single process)
    ledger_backend: Literal["mongo", "memory"] = Field(default="mongo", alias="LEDGER_BACKEND")
    ledger_max_retries: int = Field(default=3, ge=1, alias="LEDGER_MAX_RETRIES")

    # Starting bonus granted when an account is opened
    starting_basic_analyses: int = Field(default=1, ge=0, alias="STARTING_BASIC_ANALYSES")
    starting_pro_analyses: int = Field(default=0, ge=0, alias="STARTING_PRO_ANALYSES")
    starting_spins: int = Field(default=3, ge=0, alias="STARTING_SPINS")

    # Spin prize odds (the rest goes to basic)
    spin_pro_probability: float = Field(default=0.1, ge=0.0, le=1.0, alias="SPIN_PRO_PROBABILITY")

    # External face scorer
    scorer_url: str = Field(default="http://localhost:54321/functions/v1/analyze-face", alias="SCORER_URL")
    scorer_api_key: str = Field(default="", alias="SCORER_API_KEY")
    scorer_timeout_seconds: float = Field(default=30.0, gt=0, alias="SCORER_TIMEOUT_SECONDS")
    max_image_bytes: int = Field(default=8 * 1024 * 1024, gt=0, alias="MAX_IMAGE_BYTES")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(self.cors_origins_raw)


@lru_cache
def get_settings() -> Settings:
    return Settings()
