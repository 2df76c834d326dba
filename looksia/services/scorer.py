"""Client for the external face scoring service."""

from functools import lru_cache
from typing import Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from looksia.core.config import get_settings
from looksia.core.exceptions import ExternalServiceError
from looksia.core.logging import get_logger

log = get_logger(__name__)


class ScoreResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: float = Field(ge=1, le=10)
    label: Literal["Abaixo da média", "Médio", "Atraente", "Elite"]
    symmetry: float = Field(ge=1, le=10)
    proportions: float = Field(ge=1, le=10)
    jawline: float = Field(ge=1, le=10)
    eyes: float = Field(ge=1, le=10)
    skin: float = Field(ge=1, le=10)
    harmony: float = Field(ge=1, le=10)
    insights: list[str] = Field(min_length=4, max_length=6)
    weaknesses: list[str] = Field(default_factory=list, max_length=4)
    recommendations: list[str] = Field(min_length=4, max_length=6)


class FaceScorer:
    """
    POSTs `{"image": ...}` to the scorer and validates the reply.
    Every failure mode (status, timeout, transport, body) is an ExternalServiceError.
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def score(self, image: str) -> ScoreResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(self.url, json={"image": image}, headers=self._headers())
        except httpx.TimeoutException as e:
            log.warning("scorer_timeout", url=self.url, timeout=self.timeout_seconds)
            raise ExternalServiceError(details={"reason": "timeout"}) from e
        except httpx.HTTPError as e:
            log.warning("scorer_transport_error", url=self.url, error=type(e).__name__)
            raise ExternalServiceError(details={"reason": "transport"}) from e

        if response.is_error:
            log.warning("scorer_error_status", status_code=response.status_code, error=_error_message(response))
            raise ExternalServiceError(details={"reason": "status", "status_code": response.status_code})

        try:
            return ScoreResult.model_validate(response.json())
        except ValueError as e:
            # ValidationError is a ValueError, as is a JSON decode failure
            reason = "schema" if isinstance(e, ValidationError) else "malformed"
            log.warning("scorer_bad_body", reason=reason)
            raise ExternalServiceError(details={"reason": reason}) from e


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return str(body)[:200]


@lru_cache
def get_scorer() -> FaceScorer:
    s = get_settings()
    return FaceScorer(s.scorer_url, api_key=s.scorer_api_key, timeout_seconds=s.scorer_timeout_seconds)
