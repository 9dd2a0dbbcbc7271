"""
Mapping from ledger errors to HTTP responses.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from dts.api.schemas import ErrorResponse
from dts.domain.errors import (
    AlreadyVerified,
    AmountMismatch,
    CampaignClosed,
    Forbidden,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransition,
    LedgerError,
    NotFound,
    StorageUnavailable,
    ValidationFailed,
)

# Spelled out; the starlette constant was renamed between releases
UNPROCESSABLE = 422

STATUS_CODES: dict[type[LedgerError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    InvalidAmount: UNPROCESSABLE,
    AmountMismatch: UNPROCESSABLE,
    ValidationFailed: UNPROCESSABLE,
    InvalidTransition: status.HTTP_409_CONFLICT,
    AlreadyVerified: status.HTTP_409_CONFLICT,
    InsufficientBalance: status.HTTP_409_CONFLICT,
    CampaignClosed: status.HTTP_409_CONFLICT,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# Seconds a client should wait before retrying a StorageUnavailable
RETRY_AFTER_SECONDS = 1


def status_for(error: LedgerError) -> int:
    """Resolve the status code through the error's class hierarchy."""
    for cls in type(error).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return status.HTTP_400_BAD_REQUEST


def register_error_handlers(app: FastAPI) -> None:
    """Install the ledger error handler on the application."""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
        body = ErrorResponse(error=exc.code, detail=exc.message, retryable=exc.retryable)
        return JSONResponse(
            status_code=status_for(exc),
            content=body.model_dump(),
            headers=headers,
        )
