from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidInputError(BadRequestError):
    """Malformed image or unknown product; raised before the ledger is touched."""

    def __init__(self, message: str = "Invalid input", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)
        self.code = "INVALID_INPUT"


class InsufficientCreditError(AppError):
    """The named counter is 0. Nothing was changed."""

    def __init__(self, kind: str, message: str | None = None):
        label = kind.replace("_", " ")
        super().__init__(
            message or f"No {label} left",
            code="INSUFFICIENT_CREDIT",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"kind": kind},
        )
        self.kind = kind


class ConcurrentUpdateConflict(ConflictError):
    """Transient write conflict that survived the ledger's retries."""

    def __init__(self, message: str = "Too many concurrent updates, try again", attempts: int = 0):
        super().__init__(message, details={"attempts": attempts})
        self.code = "CONCURRENT_UPDATE"


class ExternalServiceError(AppError):
    """Scoring collaborator unavailable, erroring or timed out. No charge applied."""

    def __init__(self, message: str = "Analysis service temporarily unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="EXTERNAL_SERVICE_ERROR",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


class PersistenceError(AppError):
    """Storage failure; the unit of work was rolled back in full."""

    def __init__(self, message: str = "Storage temporarily unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="PERSISTENCE_ERROR",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


class AnalysisNotBilledError(PersistenceError):
    """Scoring succeeded but the charge and record could not be stored."""

    def __init__(self, result: dict[str, Any], idempotency_key: str | None = None):
        super().__init__(
            "Analysis computed but not billed; retry with the same Idempotency-Key",
            details={"result": result, "idempotency_key": idempotency_key},
        )
        self.code = "ANALYSIS_NOT_BILLED"


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from looksia.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
