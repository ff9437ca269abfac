"""In-memory stand-ins for the Charge Module and the CRM."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from water_billing.domain.date_range import DateRange
from water_billing.domain.date_range_splitter import HistorySegment
from water_billing.domain.errors import LedgerClientError, LedgerServerError
from water_billing.domain.reference_data import (
    BillingAccount,
    LicenceHolder,
    LicenceRoleHistory,
)
from water_billing.infrastructure.charge_module.client import (
    BillRunSummary,
    CreatedBillRun,
    LedgerInvoiceDetail,
)
from water_billing.infrastructure.charge_module.mappers import parse_ledger_date
from water_billing.jobs.worker import Worker

CHARGE_VALUE = Decimal("1000")
ACCOUNT = BillingAccount(invoice_account_id="acc-1", invoice_account_number="A12345678A")
HOLDER = LicenceHolder(company_id="company-1", company_name="Big Farm Co Ltd")


@dataclass
class FakeChargeModule:
    """In-memory bill runs; every debit is charged ``CHARGE_VALUE``."""

    generating: bool = False
    fail_deletes: bool = False
    bill_run_missing: bool = False
    reject_compensation_charges: bool = False
    unavailable: bool = False
    bill_runs: dict[str, list[tuple[str, dict[str, Any]]]] = field(
        default_factory=lambda: defaultdict(list)
    )
    created_bill_runs: list[str] = field(default_factory=list)
    generated: list[str] = field(default_factory=list)
    approved: list[str] = field(default_factory=list)
    sent: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    summary_requests: int = 0

    @property
    def added_transactions(self) -> list[dict[str, Any]]:
        return [
            payload
            for transactions in self.bill_runs.values()
            for _, payload in transactions
        ]

    def create_bill_run(self, region_code: str) -> CreatedBillRun:
        bill_run_id = f"bill-run-{len(self.created_bill_runs) + 1}"
        self.created_bill_runs.append(bill_run_id)
        return CreatedBillRun(id=bill_run_id, bill_run_number=1000 + len(self.created_bill_runs))

    def add_transaction(self, bill_run_id: str, transaction: dict[str, Any]) -> str:
        if self.unavailable:
            raise LedgerServerError(details={"status_code": 503})
        if self.reject_compensation_charges and transaction["compensationCharge"]:
            raise LedgerClientError(details={"status_code": 422})
        transactions = self.bill_runs[bill_run_id]
        for external_id, payload in transactions:
            if payload["clientId"] == transaction["clientId"]:
                return external_id
        external_id = f"cm-{len(self.added_transactions) + 1}"
        transactions.append((external_id, transaction))
        return external_id

    def generate_bill_run(self, bill_run_id: str) -> None:
        self.generated.append(bill_run_id)

    def approve_bill_run(self, bill_run_id: str) -> None:
        self.approved.append(bill_run_id)

    def send_bill_run(self, bill_run_id: str) -> None:
        self.sent.append(bill_run_id)

    def delete_bill_run(self, bill_run_id: str) -> None:
        if self.fail_deletes:
            raise LedgerServerError(details={"status_code": 503})
        if self.bill_run_missing:
            raise LedgerClientError(details={"status_code": 404})
        self.deleted.append(bill_run_id)

    def delete_invoice(self, bill_run_id: str, invoice_id: str) -> None:
        self.deleted.append(f"{bill_run_id}/{invoice_id}")

    def get_bill_run(self, bill_run_id: str) -> BillRunSummary:
        self.summary_requests += 1
        if self.generating:
            return BillRunSummary(id=bill_run_id, status="generating")

        invoices = self._invoices(bill_run_id)
        summaries: list[dict[str, Any]] = []
        for (customer_reference, financial_year), transactions in invoices.items():
            values = [self._value(payload) for _, payload in transactions]
            summaries.append(
                {
                    "id": self._invoice_id(customer_reference, financial_year),
                    "customerReference": customer_reference,
                    "financialYear": financial_year,
                    "netTotal": sum(values, Decimal("0")),
                    "debitLineValue": sum((v for v in values if v > 0), Decimal("0")),
                    "creditLineValue": -sum((v for v in values if v < 0), Decimal("0")),
                }
            )
        totals = [summary["netTotal"] for summary in summaries]
        return BillRunSummary.model_validate(
            {
                "id": bill_run_id,
                "status": "generated",
                "billRunNumber": 1001,
                "invoiceCount": sum(1 for total in totals if total >= 0),
                "creditNoteCount": sum(1 for total in totals if total < 0),
                "invoiceValue": sum((t for t in totals if t >= 0), Decimal("0")),
                "creditNoteValue": -sum((t for t in totals if t < 0), Decimal("0")),
                "netTotal": sum(totals, Decimal("0")),
                "invoices": summaries,
            }
        )

    def get_invoice(self, bill_run_id: str, invoice_id: str) -> LedgerInvoiceDetail:
        for key, transactions in self._invoices(bill_run_id).items():
            if self._invoice_id(*key) != invoice_id:
                continue
            licences: dict[str, list[dict[str, Any]]] = defaultdict(list)
            for external_id, payload in transactions:
                licences[payload["licenceNumber"]].append(
                    {
                        "id": external_id,
                        "chargeValue": CHARGE_VALUE,
                        "credit": payload["credit"],
                        "calculation": {
                            "WRLSChargingResponse": {"sourceFactor": 1, "sucFactor": 22.8}
                        },
                    }
                )
            return LedgerInvoiceDetail.model_validate(
                {
                    "id": invoice_id,
                    "transactionReference": f"TAI{invoice_id[-4:]}",
                    "licences": [
                        {"licenceNumber": number, "transactions": items}
                        for number, items in licences.items()
                    ],
                }
            )
        msg = f"Unknown invoice {invoice_id}"
        raise KeyError(msg)

    def _invoices(
        self, bill_run_id: str
    ) -> dict[tuple[str, int], list[tuple[str, dict[str, Any]]]]:
        invoices: dict[tuple[str, int], list[tuple[str, dict[str, Any]]]] = defaultdict(list)
        for external_id, payload in self.bill_runs[bill_run_id]:
            period_start = parse_ledger_date(payload["periodStart"])
            financial_year = period_start.year if period_start.month >= 4 else period_start.year - 1
            invoices[(payload["customerReference"], financial_year)].append(
                (external_id, payload)
            )
        return invoices

    @staticmethod
    def _value(payload: dict[str, Any]) -> Decimal:
        return -CHARGE_VALUE if payload["credit"] else CHARGE_VALUE

    @staticmethod
    def _invoice_id(customer_reference: str, financial_year: int) -> str:
        return f"invoice-{customer_reference}-{financial_year}"


@dataclass
class FakeReferenceData:
    account_start: date = date(2000, 1, 1)
    calls: list[str] = field(default_factory=list)

    def get_licence_roles(self, licence_number: str) -> LicenceRoleHistory:
        self.calls.append(licence_number)
        return LicenceRoleHistory(
            licence_holders=[
                HistorySegment(date_range=DateRange(start=date(2000, 1, 1)), value=HOLDER)
            ],
            billing_accounts=[
                HistorySegment(date_range=DateRange(start=self.account_start), value=ACCOUNT)
            ],
        )


def drain(worker: Worker, *, max_rounds: int = 50) -> int:
    """Run the worker until no job is due; returns the number of rounds."""

    for rounds in range(max_rounds):
        if not worker.run_once():
            return rounds
    msg = "Pipeline did not settle."
    raise AssertionError(msg)
