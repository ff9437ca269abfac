"""Exception handlers rendering every failure as ``{code, message, details}``."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from water_billing.domain.errors import (
    DomainError,
    LedgerServerError,
    compose_error_message,
)

logger = logging.getLogger(__name__)

LEDGER_RETRY_AFTER_SECONDS = 30


def error_response(
    status_code: int,
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"code": code, "message": message}
    if details:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    headers = None
    if isinstance(exc, LedgerServerError):
        # Charge Module outages are transient; tell callers when to come back.
        headers = {"Retry-After": str(LEDGER_RETRY_AFTER_SECONDS)}
    if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.warning(
            "upstream_failure",
            extra={"path": request.url.path, "code": exc.code},
        )
    return error_response(
        exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
        headers=headers,
    )


async def handle_request_validation_error(
    _: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed path or query parameters, such as a batch id that is not a UUID."""

    return error_response(
        HTTPStatus.BAD_REQUEST,
        code="INVALID_REQUEST",
        message=compose_error_message(
            cause="Request parameters failed validation.",
            action="Fix the invalid parameters and send the request again.",
        ),
        details={"errors": exc.errors()},
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_api_error", extra={"path": request.url.path})
    return error_response(
        HTTPStatus.INTERNAL_SERVER_ERROR,
        code="INTERNAL_SERVER_ERROR",
        message=compose_error_message(
            cause="The billing service failed unexpectedly.",
            action="Retry later or check the service logs.",
        ),
        details={"error_type": type(exc).__name__},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, cast(Any, handle_domain_error))
    app.add_exception_handler(
        RequestValidationError, cast(Any, handle_request_validation_error)
    )
    app.add_exception_handler(Exception, handle_unexpected_error)
