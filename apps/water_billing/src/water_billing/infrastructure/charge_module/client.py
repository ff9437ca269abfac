"""HTTP client for the Charge Module bill run API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from water_billing.core.settings import Settings, get_settings
from water_billing.domain.errors import (
    LedgerClientError,
    LedgerServerError,
    LedgerTimeoutError,
    compose_error_message,
)

logger = logging.getLogger(__name__)

BILL_RUNS_PATH = "v2/wrls/bill-runs"
GENERATING_STATUS = "generating"


class LedgerModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CreatedBillRun(LedgerModel):
    id: str
    bill_run_number: int | None = None


class LedgerInvoiceSummary(LedgerModel):
    """Invoice totals for one customer and financial year."""

    id: str
    customer_reference: str
    financial_year: int
    deminimis_invoice: bool = False
    net_total: Decimal | None = None
    debit_line_value: Decimal | None = None
    credit_line_value: Decimal | None = None

    @property
    def financial_year_ending(self) -> int:
        # The Charge Module identifies financial years by their starting year.
        return self.financial_year + 1


class BillRunSummary(LedgerModel):
    id: str
    status: str
    bill_run_number: int | None = None
    invoice_count: int | None = None
    credit_note_count: int | None = None
    invoice_value: Decimal | None = None
    credit_note_value: Decimal | None = None
    net_total: Decimal | None = None
    invoices: list[LedgerInvoiceSummary] = Field(default_factory=list)

    @property
    def is_generating(self) -> bool:
        return self.status == GENERATING_STATUS


class LedgerTransaction(LedgerModel):
    """Transaction as calculated by the Charge Module."""

    id: str
    charge_value: Decimal = Decimal("0")
    credit: bool = False
    minimum_charge_adjustment: bool = False
    line_description: str = ""
    period_start: str | None = None
    period_end: str | None = None
    billable_days: int = 0
    authorised_days: int = 0
    volume: Decimal | None = None
    calculation: dict[str, Any] | None = None

    @property
    def charging_response(self) -> dict[str, Any]:
        if not self.calculation:
            return {}
        return dict(self.calculation.get("WRLSChargingResponse") or {})


class LedgerLicence(LedgerModel):
    licence_number: str
    transactions: list[LedgerTransaction] = Field(default_factory=list)


class LedgerInvoiceDetail(LedgerModel):
    id: str
    transaction_reference: str | None = None
    deminimis_invoice: bool = False
    licences: list[LedgerLicence] = Field(default_factory=list)


class ChargeModuleClient:
    """Synchronous Charge Module client with finite timeouts.

    Timeouts and transport failures are reported as retriable server errors;
    4xx responses as client errors scoped to the single request.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("Charge Module timeout must be greater than zero.")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ChargeModuleClient:
        resolved = settings or get_settings()
        return cls(
            base_url=resolved.charge_module_base_url,
            timeout_seconds=resolved.charge_module_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ChargeModuleClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def create_bill_run(self, region_code: str) -> CreatedBillRun:
        payload = self._request("POST", BILL_RUNS_PATH, json_body={"region": region_code})
        return CreatedBillRun.model_validate(_unwrap(payload, "billRun"))

    def add_transaction(self, bill_run_id: str, transaction: Mapping[str, Any]) -> str:
        """Submit a transaction and return its ledger id.

        A 409 conflict means the transaction was already submitted; the
        existing id from the response body is returned as a success.
        """

        path = f"{BILL_RUNS_PATH}/{bill_run_id}/transactions"
        response = self._send("POST", path, json_body=transaction)
        if response.status_code == httpx.codes.CONFLICT:
            existing_id = _extract_transaction_id(_parse_json(response))
            if existing_id is None:
                raise LedgerClientError(
                    message=compose_error_message(
                        cause="Charge Module reported a duplicate without its id.",
                        action="Check the bill run in the Charge Module.",
                    ),
                    details={"status_code": response.status_code},
                )
            logger.info(
                "ledger_transaction_already_exists",
                extra={"bill_run_id": bill_run_id, "external_id": existing_id},
            )
            return existing_id

        payload = self._handle(response)
        transaction_id = _extract_transaction_id(payload)
        if transaction_id is None:
            raise LedgerServerError(
                message=compose_error_message(
                    cause="Charge Module response did not include a transaction id.",
                    action="Retry later.",
                )
            )
        return transaction_id

    def approve_bill_run(self, bill_run_id: str) -> None:
        self._request("PATCH", f"{BILL_RUNS_PATH}/{bill_run_id}/approve")

    def send_bill_run(self, bill_run_id: str) -> None:
        self._request("PATCH", f"{BILL_RUNS_PATH}/{bill_run_id}/send")

    def generate_bill_run(self, bill_run_id: str) -> None:
        self._request("PATCH", f"{BILL_RUNS_PATH}/{bill_run_id}/generate")

    def get_bill_run(self, bill_run_id: str) -> BillRunSummary:
        payload = self._request("GET", f"{BILL_RUNS_PATH}/{bill_run_id}")
        return BillRunSummary.model_validate(_unwrap(payload, "billRun"))

    def get_invoice(self, bill_run_id: str, invoice_id: str) -> LedgerInvoiceDetail:
        payload = self._request(
            "GET", f"{BILL_RUNS_PATH}/{bill_run_id}/invoices/{invoice_id}"
        )
        return LedgerInvoiceDetail.model_validate(_unwrap(payload, "invoice"))

    def delete_bill_run(self, bill_run_id: str) -> None:
        self._request("DELETE", f"{BILL_RUNS_PATH}/{bill_run_id}")

    def delete_invoice(self, bill_run_id: str, invoice_id: str) -> None:
        self._request(
            "DELETE", f"{BILL_RUNS_PATH}/{bill_run_id}/invoices/{invoice_id}"
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, Any] | None = None,
    ) -> object:
        return self._handle(self._send(method, path, json_body=json_body))

    def _send(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            return self._client.request(
                method=method,
                url=path,
                json=dict(json_body) if json_body is not None else None,
            )
        except httpx.TimeoutException as exc:
            logger.warning("ledger_request_timeout", extra={"method": method, "path": path})
            raise LedgerTimeoutError(details={"method": method, "path": path}) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "ledger_request_failed",
                extra={"method": method, "path": path, "error": str(exc)},
            )
            raise LedgerServerError(
                message=compose_error_message(
                    cause=f"Charge Module request failed: {exc}.",
                    action="Retry later.",
                ),
                details={"method": method, "path": path},
            ) from exc

    def _handle(self, response: httpx.Response) -> object:
        if response.is_success:
            if not response.content:
                return {}
            return _parse_json(response)

        details = {
            "status_code": response.status_code,
            "path": response.request.url.path,
            "error": _build_api_error(response),
        }
        if response.is_client_error:
            raise LedgerClientError(
                message=compose_error_message(
                    cause=f"Charge Module rejected the request: {details['error']}",
                    action="Review the submitted charging data.",
                ),
                details=details,
            )
        raise LedgerServerError(
            message=compose_error_message(
                cause=f"Charge Module failed: {details['error']}",
                action="Retry later.",
            ),
            details=details,
        )


def _parse_json(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError as exc:
        raise LedgerServerError(
            message=compose_error_message(
                cause=(
                    "Charge Module returned a non-JSON response with status "
                    f"{response.status_code}."
                ),
                action="Retry later.",
            )
        ) from exc


def _build_api_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        if text:
            return f"status {response.status_code}: {text}"
        return f"status {response.status_code}"

    if isinstance(payload, Mapping):
        message = payload.get("message")
        error = payload.get("error")
        if isinstance(message, str):
            if isinstance(error, str):
                return f"{error} ({response.status_code}): {message}"
            return f"status {response.status_code}: {message}"
    return f"status {response.status_code}: {payload}"


def _unwrap(payload: object, key: str) -> object:
    if isinstance(payload, Mapping) and key in payload:
        return payload[key]
    return payload


def _extract_transaction_id(payload: object) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    transaction = payload.get("transaction")
    if isinstance(transaction, Mapping) and transaction.get("id"):
        return str(transaction["id"])
    for key in ("transactionId", "id"):
        value = payload.get(key)
        if value:
            return str(value)
    return None
