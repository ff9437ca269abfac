"""Domain exceptions used across pipeline, services and API."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, ClassVar


def compose_error_message(*, cause: str, action: str) -> str:
    """Build a user-facing error message with cause and corrective action."""

    return f"Cause: {cause} Action: {action}"


@dataclass(slots=True)
class DomainError(Exception):
    """Base exception for predictable domain failures."""

    code: str
    message: str
    status_code: int
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class BillingError(DomainError):
    """Domain error whose code, status and fallback message are class defaults.

    Subclasses only declare the class attributes; callers pass a specific
    ``message`` when they know more than the default cause.
    """

    error_code: ClassVar[str]
    http_status: ClassVar[HTTPStatus]
    default_cause: ClassVar[str]
    default_action: ClassVar[str] = "Retry later."

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code=self.error_code,
            message=message
            or compose_error_message(
                cause=self.default_cause,
                action=self.default_action,
            ),
            status_code=self.http_status,
            details=details or {},
        )


class NotFoundError(BillingError):
    """Raised when a batch, charge version or other record cannot be loaded."""

    error_code = "NOT_FOUND"
    http_status = HTTPStatus.NOT_FOUND
    default_cause = "The requested record does not exist."
    default_action = "Check the identifier and try again."


class ValidationError(BillingError):
    """Raised when charging data is malformed; never coerced silently."""

    error_code = "VALIDATION_ERROR"
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY
    default_cause = "Charging data violates a billing rule."
    default_action = "Correct the charge version data and rebuild the batch."


class BatchConflictError(BillingError):
    error_code = "BATCH_CONFLICT"
    http_status = HTTPStatus.CONFLICT
    default_cause = "A batch is already processing or ready in this region."
    default_action = "Send or delete the existing batch before creating another."


class InvalidStatusTransitionError(BillingError):
    error_code = "INVALID_STATUS_TRANSITION"
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY
    default_cause = "The requested status change is not allowed."
    default_action = "Reload the record and check its current status."


class LedgerError(BillingError):
    """Base class for Charge Module failures."""

    http_status = HTTPStatus.BAD_GATEWAY


class LedgerClientError(LedgerError):
    """Charge Module 4xx; affects the one request that caused it."""

    error_code = "LEDGER_CLIENT_ERROR"
    default_cause = "The Charge Module rejected the request."
    default_action = "Review the submitted charging data."


class LedgerServerError(LedgerError):
    """Charge Module 5xx or network failure; retriable."""

    error_code = "LEDGER_SERVER_ERROR"
    default_cause = "The Charge Module is unavailable."


class LedgerTimeoutError(LedgerServerError):
    error_code = "LEDGER_TIMEOUT"
    http_status = HTTPStatus.GATEWAY_TIMEOUT
    default_cause = "The Charge Module did not respond in time."


class ReferenceDataError(BillingError):
    """Raised when licence holder or billing account history is unavailable."""

    error_code = "REFERENCE_DATA_UNAVAILABLE"
    http_status = HTTPStatus.BAD_GATEWAY
    default_cause = "Reference data could not be loaded."


class ReconciliationDeferred(Exception):
    """Signals that the ledger is still generating; re-poll later."""

    def __init__(self, batch_id: object) -> None:
        super().__init__(f"Charge Module is still generating bill run for {batch_id}.")
        self.batch_id = batch_id
