from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import (
    ConsistencyViolationError,
    EppLedgerError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    StockConflictError,
    ValidationError,
)
from .logging import log_extra

logger = logging.getLogger("epp_ledger.errors")

# Most specific class first.
DOMAIN_STATUS: tuple[tuple[type[EppLedgerError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (StockConflictError, status.HTTP_409_CONFLICT),
    (ConsistencyViolationError, status.HTTP_423_LOCKED),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


class ErrorEnvelope(JSONResponse):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"code": code, "message": message}
        if details:
            payload["details"] = details
        super().__init__(payload, status_code=status_code, headers=headers)


def status_for(exc: EppLedgerError) -> int:
    for klass, code in DOMAIN_STATUS:
        if isinstance(exc, klass):
            return code
    return status.HTTP_400_BAD_REQUEST


async def domain_error_handler(request: Request, exc: EppLedgerError):
    status_code = status_for(exc)
    if status_code >= 423:
        logger.error("request.domain_error", extra=log_extra(code=exc.code, path=request.url.path, **exc.details))
    return ErrorEnvelope(status_code=status_code, code=exc.code.lower(), message=exc.message, details=exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Error"
    details = detail if isinstance(detail, dict) else None
    return ErrorEnvelope(
        status_code=exc.status_code,
        code="http_error",
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc):  # type: ignore[override]
    from fastapi.exceptions import RequestValidationError

    if isinstance(exc, RequestValidationError):
        return ErrorEnvelope(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Validation failed",
            details={"errors": jsonable_encoder(exc.errors())},
        )
    raise exc


async def storage_error_handler(request: Request, exc):
    # Raw driver messages stay in the log; callers get an operator-safe message.
    logger.error("request.storage_error", exc_info=exc, extra=log_extra(path=request.url.path))
    return ErrorEnvelope(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code="storage_error",
        message="The stock store could not complete the operation; nothing was changed",
    )
