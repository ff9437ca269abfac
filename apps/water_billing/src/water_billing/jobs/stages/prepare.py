"""Stage 3: settle the batch's transactions and open the ledger bill run."""

from __future__ import annotations

import logging

from water_billing.db.models.batch import BatchErrorCode, BatchStatus, BatchType
from water_billing.db.models.transaction import TransactionStatus
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.stages.base import (
    Repositories,
    Stage,
    load_processing_batch,
    settle_batch,
)
from water_billing.services.supplementary_diff_service import SupplementaryDiffService

logger = logging.getLogger(__name__)


class PrepareStage(Stage):
    name = StageName.PREPARE
    error_code = BatchErrorCode.FAILED_TO_PREPARE_TRANSACTIONS

    def handle(self, repositories: Repositories, message: JobMessage) -> None:
        if load_processing_batch(repositories, message.payload.batch_id) is None:
            return
        batch = repositories.batches.get_for_update(message.payload.batch_id)
        if batch is None or batch.status != BatchStatus.PROCESSING:
            return

        if batch.prepared_at is None:
            if batch.batch_type == BatchType.SUPPLEMENTARY:
                SupplementaryDiffService(
                    charge_version_year_repository=repositories.charge_version_years,
                    invoice_repository=repositories.invoices,
                    transaction_repository=repositories.transactions,
                ).apply(batch)
            repositories.invoices.delete_empty_for_batch(batch.id)
            repositories.batches.mark_prepared(batch)

        candidate_ids = repositories.transactions.list_ids_for_batch(
            batch.id,
            status=TransactionStatus.CANDIDATE,
        )
        if not candidate_ids:
            # Nothing left to send; the completion hook settles the batch.
            return

        if batch.external_id is None:
            bill_run = self.dependencies.charge_module.create_bill_run(batch.region.code)
            repositories.batches.set_bill_run(
                batch,
                external_id=bill_run.id,
                bill_run_number=bill_run.bill_run_number,
            )
            logger.info(
                "ledger_bill_run_created",
                extra={"batch_id": str(batch.id), "external_id": bill_run.id},
            )

        for transaction_id in candidate_ids:
            self.enqueue(
                repositories,
                StageName.CREATE_CHARGE,
                batch_id=batch.id,
                transaction_id=transaction_id,
            )
        logger.info(
            "create_charge_jobs_queued",
            extra={"batch_id": str(batch.id), "transaction_count": len(candidate_ids)},
        )

    def on_complete(self, repositories: Repositories, message: JobMessage) -> None:
        if load_processing_batch(repositories, message.payload.batch_id) is None:
            return
        settle_batch(self, repositories, message.payload.batch_id)
