"""Supplementary batch delta against charges already sent to the ledger."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from uuid import UUID

from water_billing.db.models.batch import Batch
from water_billing.db.models.charge_version_year import (
    ChargeVersionYearStatus,
    TransactionType,
)
from water_billing.db.models.invoice import Invoice
from water_billing.db.models.transaction import Transaction, TransactionStatus
from water_billing.repositories.charge_version_year_repository import (
    ChargeVersionYearRepository,
)
from water_billing.repositories.invoice_repository import InvoiceRepository
from water_billing.repositories.transaction_repository import TransactionRepository

logger = logging.getLogger(__name__)

ScopeKey = tuple[str, int, bool]


@dataclass(slots=True, frozen=True)
class DiffSummary:
    created_count: int
    reversed_count: int
    unchanged_count: int


def outstanding_charges(history: list[Transaction]) -> list[Transaction]:
    """Debits of one fingerprint that no later credit has cancelled.

    Credits pointing at their source debit cancel that debit; credits without
    a source cancel the oldest remaining debits one for one.
    """

    debits = [row for row in history if not row.is_credit]
    credits = [row for row in history if row.is_credit]
    reversed_ids = {
        credit.source_transaction_id
        for credit in credits
        if credit.source_transaction_id is not None
    }
    debit_ids = {debit.id for debit in debits}
    open_debits = [debit for debit in debits if debit.id not in reversed_ids]
    unsourced_credits = sum(
        1 for credit in credits if credit.source_transaction_id not in debit_ids
    )
    return open_debits[unsourced_credits:]


class SupplementaryDiffService:
    """Compare a supplementary batch's candidates with previously billed charges.

    Unchanged charges are dropped from the batch, new charges stay as
    candidates, and charges no longer due are credited back by a reversal.
    """

    def __init__(
        self,
        *,
        charge_version_year_repository: ChargeVersionYearRepository,
        invoice_repository: InvoiceRepository,
        transaction_repository: TransactionRepository,
    ) -> None:
        self._charge_version_year_repository = charge_version_year_repository
        self._invoice_repository = invoice_repository
        self._transaction_repository = transaction_repository

    def apply(self, batch: Batch) -> DiffSummary:
        scope = self._scope(batch)
        history = self._transaction_repository.list_historical(
            region_id=batch.region_id,
            licence_numbers={licence_number for licence_number, _, _ in scope},
            financial_year_endings={year for _, year, _ in scope},
        )

        historical_by_fingerprint: dict[str, list[Transaction]] = defaultdict(list)
        invoices_by_transaction: dict[UUID, Invoice] = {}
        for transaction, invoice in history:
            key = (
                transaction.licence_number,
                invoice.financial_year_ending,
                transaction.is_two_part_tariff,
            )
            if key not in scope:
                continue
            historical_by_fingerprint[transaction.fingerprint].append(transaction)
            invoices_by_transaction[transaction.id] = invoice

        current_by_fingerprint: dict[str, list[Transaction]] = defaultdict(list)
        for transaction in self._transaction_repository.list_for_batch(
            batch.id,
            status=TransactionStatus.CANDIDATE,
        ):
            if transaction.source_transaction_id is None:
                current_by_fingerprint[transaction.fingerprint].append(transaction)

        already_reversed = self._transaction_repository.list_reversed_source_ids(batch.id)
        unchanged_ids: list[UUID] = []
        created_count = 0
        reversed_count = 0
        for fingerprint in sorted(set(historical_by_fingerprint) | set(current_by_fingerprint)):
            current = current_by_fingerprint.get(fingerprint, [])
            billed = outstanding_charges(historical_by_fingerprint.get(fingerprint, []))
            matched = min(len(current), len(billed))
            unchanged_ids.extend(transaction.id for transaction in current[:matched])
            created_count += len(current) - matched
            for source in billed[matched:]:
                if source.id in already_reversed:
                    continue
                self._reverse(batch, source, invoices_by_transaction[source.id])
                reversed_count += 1

        self._transaction_repository.delete_by_ids(unchanged_ids)
        self._invoice_repository.delete_empty_for_batch(batch.id)

        summary = DiffSummary(
            created_count=created_count,
            reversed_count=reversed_count,
            unchanged_count=len(unchanged_ids),
        )
        logger.info(
            "supplementary_diff_applied",
            extra={
                "batch_id": str(batch.id),
                "created_count": summary.created_count,
                "reversed_count": summary.reversed_count,
                "unchanged_count": summary.unchanged_count,
            },
        )
        return summary

    def _scope(self, batch: Batch) -> set[ScopeKey]:
        """Licence, year and charge kind combinations rebuilt by this batch."""

        scope: set[ScopeKey] = set()
        for unit in self._charge_version_year_repository.list_for_batch(
            batch.id,
            status=ChargeVersionYearStatus.READY,
        ):
            scope.add(
                (
                    unit.charge_version.licence.licence_number,
                    unit.financial_year_ending,
                    unit.transaction_type == TransactionType.TWO_PART_TARIFF,
                )
            )
        return scope

    def _reverse(self, batch: Batch, source: Transaction, source_invoice: Invoice) -> Transaction:
        invoice = self._invoice_repository.get_or_create(
            batch_id=batch.id,
            invoice_account_id=source_invoice.invoice_account_id,
            invoice_account_number=source_invoice.invoice_account_number,
            financial_year_ending=source_invoice.financial_year_ending,
        )
        source_licence = source.invoice_licence
        invoice_licence = self._invoice_repository.get_or_create_invoice_licence(
            invoice_id=invoice.id,
            licence_id=source_licence.licence_id,
            licence_number=source_licence.licence_number,
            company_id=source_licence.company_id,
            company_name=source_licence.company_name,
            contact=source_licence.contact,
            address=source_licence.address,
        )
        return self._transaction_repository.add(
            batch_id=batch.id,
            invoice_licence_id=invoice_licence.id,
            facts=source.charging_facts(),
            charge_element_id=source.charge_element_id,
            source_transaction_id=source.id,
            status=TransactionStatus.CANDIDATE,
            value=-source.value if source.value is not None else None,
            is_credit=not source.is_credit,
            section_126_factor=source.section_126_factor,
        )
