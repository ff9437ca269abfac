"""Copy the Charge Module's calculated bill run back onto local rows."""

from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from water_billing.db.models.batch import Batch
from water_billing.db.models.invoice import Invoice, InvoiceLicence
from water_billing.db.models.transaction import Transaction, TransactionStatus
from water_billing.domain.charging_facts import ChargingFacts
from water_billing.domain.errors import NotFoundError, compose_error_message
from water_billing.domain.financial_year import FinancialYear
from water_billing.infrastructure.charge_module.client import (
    BillRunSummary,
    LedgerInvoiceDetail,
    LedgerInvoiceSummary,
    LedgerTransaction,
)
from water_billing.infrastructure.charge_module.mappers import (
    ledger_calculation_values,
    parse_ledger_date,
)
from water_billing.repositories.batch_repository import BatchRepository
from water_billing.repositories.invoice_repository import InvoiceRepository
from water_billing.repositories.transaction_repository import TransactionRepository

logger = logging.getLogger(__name__)

MINIMUM_CHARGE_DESCRIPTION = "Minimum Charge"


class BillRunReader(Protocol):
    def get_bill_run(self, bill_run_id: str) -> BillRunSummary: ...

    def get_invoice(self, bill_run_id: str, invoice_id: str) -> LedgerInvoiceDetail: ...


class ReconciliationService:
    """Two-way sync of a batch with its Charge Module bill run."""

    def __init__(
        self,
        *,
        batch_repository: BatchRepository,
        invoice_repository: InvoiceRepository,
        transaction_repository: TransactionRepository,
        charge_module: BillRunReader,
    ) -> None:
        self._batch_repository = batch_repository
        self._invoice_repository = invoice_repository
        self._transaction_repository = transaction_repository
        self._charge_module = charge_module

    def update_batch(self, batch: Batch) -> bool:
        """Apply ledger totals and transactions; False while the ledger generates.

        Nothing is written when the bill run is still generating.
        """

        if batch.external_id is None:
            raise NotFoundError(
                message=compose_error_message(
                    cause=f"Batch {batch.id} has no Charge Module bill run.",
                    action="Rebuild the batch.",
                ),
                details={"batch_id": str(batch.id)},
            )

        summary = self._charge_module.get_bill_run(batch.external_id)
        if summary.is_generating:
            logger.info(
                "ledger_bill_run_generating",
                extra={"batch_id": str(batch.id), "external_id": batch.external_id},
            )
            return False

        self._batch_repository.update_totals(
            batch,
            invoice_count=summary.invoice_count,
            credit_note_count=summary.credit_note_count,
            invoice_value=summary.invoice_value,
            credit_note_value=summary.credit_note_value,
            net_total=summary.net_total,
            bill_run_number=summary.bill_run_number,
        )

        invoices = {
            (invoice.invoice_account_number, invoice.financial_year_ending): invoice
            for invoice in self._invoice_repository.list_for_batch(batch.id)
        }
        reported_ids: set[str] = set()
        for ledger_invoice in summary.invoices:
            invoice = invoices.get(
                (ledger_invoice.customer_reference, ledger_invoice.financial_year_ending)
            )
            if invoice is None:
                logger.warning(
                    "ledger_invoice_unmatched",
                    extra={
                        "batch_id": str(batch.id),
                        "customer_reference": ledger_invoice.customer_reference,
                        "financial_year_ending": ledger_invoice.financial_year_ending,
                    },
                )
                continue
            detail = self._charge_module.get_invoice(batch.external_id, ledger_invoice.id)
            reported_ids |= self._update_invoice(batch, invoice, ledger_invoice, detail)

        # Drop whatever the ledger no longer reports, whole invoices included.
        stale_ids: list[UUID] = [
            transaction.id
            for invoice in invoices.values()
            for invoice_licence in invoice.invoice_licences
            for transaction in invoice_licence.transactions
            if transaction.external_id is not None
            and transaction.external_id not in reported_ids
        ]
        self._transaction_repository.delete_by_ids(stale_ids)

        removed_licences, removed_invoices = self._invoice_repository.delete_empty_for_batch(
            batch.id
        )
        logger.info(
            "batch_reconciled",
            extra={
                "batch_id": str(batch.id),
                "invoice_count": summary.invoice_count,
                "net_total": str(summary.net_total),
                "removed_transactions": len(stale_ids),
                "removed_invoice_licences": removed_licences,
                "removed_invoices": removed_invoices,
            },
        )
        return True

    def _update_invoice(
        self,
        batch: Batch,
        invoice: Invoice,
        ledger_invoice: LedgerInvoiceSummary,
        detail: LedgerInvoiceDetail,
    ) -> set[str]:
        """Update one matched invoice; returns the transaction ids the ledger reports."""

        self._invoice_repository.update_from_ledger(
            invoice,
            external_id=ledger_invoice.id,
            net_total=ledger_invoice.net_total,
            invoice_value=ledger_invoice.debit_line_value,
            credit_note_value=(
                -ledger_invoice.credit_line_value
                if ledger_invoice.credit_line_value is not None
                else None
            ),
            is_de_minimis=ledger_invoice.deminimis_invoice,
            invoice_number=detail.transaction_reference,
        )

        licences = {
            invoice_licence.licence_number: invoice_licence
            for invoice_licence in invoice.invoice_licences
        }
        local_by_external_id: dict[str, Transaction] = {
            transaction.external_id: transaction
            for invoice_licence in invoice.invoice_licences
            for transaction in invoice_licence.transactions
            if transaction.external_id is not None
        }

        ledger_ids: set[str] = set()
        for ledger_licence in detail.licences:
            for ledger_transaction in ledger_licence.transactions:
                ledger_ids.add(ledger_transaction.id)
                values = ledger_calculation_values(
                    ledger_transaction,
                    is_de_minimis=detail.deminimis_invoice,
                )
                local = local_by_external_id.get(ledger_transaction.id)
                if local is None:
                    invoice_licence = licences.get(ledger_licence.licence_number)
                    if invoice_licence is None:
                        logger.warning(
                            "ledger_transaction_unmatched",
                            extra={
                                "batch_id": str(batch.id),
                                "external_id": ledger_transaction.id,
                                "licence_number": ledger_licence.licence_number,
                            },
                        )
                        continue
                    local = self._add_minimum_charge(
                        batch,
                        invoice,
                        invoice_licence,
                        ledger_transaction,
                    )
                    if local is None:
                        continue
                for column, value in values.items():
                    setattr(local, column, value)

        return ledger_ids

    def _add_minimum_charge(
        self,
        batch: Batch,
        invoice: Invoice,
        invoice_licence: InvoiceLicence,
        ledger_transaction: LedgerTransaction,
    ) -> Transaction | None:
        """Record a transaction the ledger generated itself, such as a minimum charge."""

        sibling = next(iter(invoice_licence.transactions), None)
        if sibling is None:
            logger.warning(
                "ledger_minimum_charge_without_sibling",
                extra={"batch_id": str(batch.id), "external_id": ledger_transaction.id},
            )
            return None

        financial_year = FinancialYear(year_ending=invoice.financial_year_ending)
        facts = ChargingFacts(
            charge_period_start=(
                parse_ledger_date(ledger_transaction.period_start)
                if ledger_transaction.period_start
                else financial_year.start
            ),
            charge_period_end=(
                parse_ledger_date(ledger_transaction.period_end)
                if ledger_transaction.period_end
                else financial_year.end
            ),
            billable_days=ledger_transaction.billable_days,
            authorised_days=max(
                ledger_transaction.authorised_days,
                ledger_transaction.billable_days,
            ),
            volume=ledger_transaction.volume,
            description=ledger_transaction.line_description or MINIMUM_CHARGE_DESCRIPTION,
            is_compensation_charge=False,
            is_new_licence=False,
            agreements=(),
            invoice_account_number=invoice.invoice_account_number,
            source=sibling.source,
            season=sibling.season,
            loss=sibling.loss,
            licence_number=invoice_licence.licence_number,
            region_code=sibling.region_code,
            is_two_part_tariff=False,
        )
        transaction = self._transaction_repository.add(
            batch_id=batch.id,
            invoice_licence_id=invoice_licence.id,
            facts=facts,
            status=TransactionStatus.CHARGE_CREATED,
            value=ledger_transaction.charge_value,
            is_credit=ledger_transaction.credit,
            external_id=ledger_transaction.id,
            is_minimum_charge=ledger_transaction.minimum_charge_adjustment,
        )
        logger.info(
            "ledger_minimum_charge_recorded",
            extra={"batch_id": str(batch.id), "external_id": ledger_transaction.id},
        )
        return transaction
