"""Stage 5: pull calculated totals back from the Charge Module."""

from __future__ import annotations

import logging

from water_billing.db.models.batch import BatchErrorCode, BatchStatus
from water_billing.domain.errors import LedgerClientError, ReconciliationDeferred
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.stages.base import Repositories, Stage
from water_billing.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

CONFLICT_STATUS = 409


class RefreshTotalsStage(Stage):
    name = StageName.REFRESH_TOTALS
    error_code = BatchErrorCode.FAILED_TO_REFRESH_TOTALS

    def handle(self, repositories: Repositories, message: JobMessage) -> None:
        batch = repositories.batches.get(message.payload.batch_id)
        if batch is None or batch.status != BatchStatus.READY or batch.external_id is None:
            return

        charge_module = self.dependencies.charge_module
        if batch.generate_requested_at is None:
            try:
                charge_module.generate_bill_run(batch.external_id)
            except LedgerClientError as exc:
                # Already generating or generated.
                if exc.details.get("status_code") != CONFLICT_STATUS:
                    raise
            repositories.batches.mark_generate_requested(batch)

        reconciled = ReconciliationService(
            batch_repository=repositories.batches,
            invoice_repository=repositories.invoices,
            transaction_repository=repositories.transactions,
            charge_module=charge_module,
        ).update_batch(batch)
        if not reconciled:
            raise ReconciliationDeferred(batch.id)
