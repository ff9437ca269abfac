"""Stage 2: build invoices and transactions for one charge version year."""

from __future__ import annotations

import logging

from water_billing.db.models.batch import Batch, BatchErrorCode
from water_billing.db.models.charge_version_year import (
    ChargeVersionYear,
    ChargeVersionYearStatus,
)
from water_billing.domain.results import Ok
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.stages.base import (
    Repositories,
    Stage,
    fail_batch,
    load_processing_batch,
    queue_prepare_when_units_settled,
)
from water_billing.services.charge_processor import (
    ChargeProcessor,
    ProcessedChargeVersionYear,
)

logger = logging.getLogger(__name__)


class ProcessStage(Stage):
    name = StageName.PROCESS
    error_code = BatchErrorCode.FAILED_TO_PROCESS_CHARGE_VERSIONS

    def handle(self, repositories: Repositories, message: JobMessage) -> None:
        batch = load_processing_batch(repositories, message.payload.batch_id)
        if batch is None or message.payload.unit_id is None:
            return
        unit = repositories.charge_version_years.get(message.payload.unit_id)
        if unit is None or unit.status != ChargeVersionYearStatus.PROCESSING:
            return

        processor = ChargeProcessor(
            charge_version_repository=repositories.charge_versions,
            reference_data=self.dependencies.reference_data,
        )
        result = processor.process(batch=batch, charge_version_year=unit)
        if not isinstance(result, Ok):
            logger.warning(
                "charge_version_year_rejected",
                extra={
                    "batch_id": str(batch.id),
                    "charge_version_year_id": str(unit.id),
                    "reason": result.message,
                    "details": result.details,
                },
            )
            repositories.charge_version_years.transition_status(
                unit.id,
                target=ChargeVersionYearStatus.ERROR,
            )
            fail_batch(repositories, batch.id, self.error_code)
            return

        # Rows from an earlier attempt at this unit are replaced, not added to.
        repositories.transactions.delete_for_charge_version_year(unit.id)
        self._persist(repositories, batch, unit, result.value)
        repositories.charge_version_years.transition_status(
            unit.id,
            target=ChargeVersionYearStatus.READY,
        )

    def on_complete(self, repositories: Repositories, message: JobMessage) -> None:
        queue_prepare_when_units_settled(self, repositories, message.payload.batch_id)

    def on_failed(
        self,
        repositories: Repositories,
        message: JobMessage,
        error: Exception,
    ) -> None:
        if message.payload.unit_id is not None:
            repositories.charge_version_years.transition_status(
                message.payload.unit_id,
                target=ChargeVersionYearStatus.ERROR,
            )
        fail_batch(repositories, message.payload.batch_id, self.error_code)

    def _persist(
        self,
        repositories: Repositories,
        batch: Batch,
        unit: ChargeVersionYear,
        processed: ProcessedChargeVersionYear,
    ) -> None:
        for draft in processed.invoices:
            invoice = repositories.invoices.get_or_create(
                batch_id=batch.id,
                invoice_account_id=draft.billing_account.invoice_account_id,
                invoice_account_number=draft.billing_account.invoice_account_number,
                financial_year_ending=draft.financial_year_ending,
            )
            licence_draft = draft.invoice_licence
            holder = licence_draft.licence_holder
            invoice_licence = repositories.invoices.get_or_create_invoice_licence(
                invoice_id=invoice.id,
                licence_id=licence_draft.licence_id,
                licence_number=licence_draft.licence_number,
                company_id=holder.company_id if holder else None,
                company_name=holder.company_name if holder else None,
                contact=holder.contact if holder else None,
                address=holder.address if holder else None,
            )
            for transaction in licence_draft.transactions:
                repositories.transactions.add(
                    batch_id=batch.id,
                    invoice_licence_id=invoice_licence.id,
                    facts=transaction.facts,
                    charge_version_year_id=unit.id,
                    charge_element_id=transaction.charge_element_id,
                    section_126_factor=transaction.section_126_factor,
                    is_volume_review_required=transaction.is_volume_review_required,
                )
