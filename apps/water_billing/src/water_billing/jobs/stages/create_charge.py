"""Stage 4: submit one candidate transaction to the Charge Module."""

from __future__ import annotations

import logging

from water_billing.db.models.batch import BatchErrorCode
from water_billing.db.models.transaction import TransactionStatus
from water_billing.domain.errors import (
    LedgerClientError,
    ValidationError,
    compose_error_message,
)
from water_billing.infrastructure.charge_module.mappers import build_transaction_payload
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.stages.base import (
    Repositories,
    Stage,
    fail_batch,
    load_processing_batch,
    settle_batch,
)

logger = logging.getLogger(__name__)


class CreateChargeStage(Stage):
    """Ledger 4xx and payload problems fail only the transaction.

    Server errors and timeouts propagate so the queue retries the job.
    """

    name = StageName.CREATE_CHARGE
    error_code = BatchErrorCode.FAILED_TO_CREATE_CHARGE

    def handle(self, repositories: Repositories, message: JobMessage) -> None:
        batch = load_processing_batch(repositories, message.payload.batch_id)
        transaction_id = message.payload.transaction_id
        if batch is None or transaction_id is None or batch.external_id is None:
            return
        transaction = repositories.transactions.get(transaction_id)
        if transaction is None or transaction.status != TransactionStatus.CANDIDATE:
            return

        licence = repositories.charge_versions.get_licence(
            transaction.invoice_licence.licence_id
        )
        try:
            if licence is None:
                raise ValidationError(
                    message=compose_error_message(
                        cause=f"Licence {transaction.licence_number} no longer exists.",
                        action="Restore the licence and rebuild the batch.",
                    ),
                    details={"licence_number": transaction.licence_number},
                )
            payload = build_transaction_payload(
                batch=batch,
                transaction=transaction,
                licence=licence,
            )
            external_id = self.dependencies.charge_module.add_transaction(
                batch.external_id,
                payload,
            )
        except (ValidationError, LedgerClientError) as exc:
            logger.warning(
                "transaction_rejected",
                extra={
                    "batch_id": str(batch.id),
                    "transaction_id": str(transaction_id),
                    "error_code": exc.code,
                },
            )
            repositories.transactions.transition_status(
                transaction_id,
                target=TransactionStatus.ERROR,
                error_message=exc.message,
            )
            return

        repositories.transactions.transition_status(
            transaction_id,
            target=TransactionStatus.CHARGE_CREATED,
            external_id=external_id,
        )

    def on_complete(self, repositories: Repositories, message: JobMessage) -> None:
        if load_processing_batch(repositories, message.payload.batch_id) is None:
            return
        settle_batch(self, repositories, message.payload.batch_id)

    def on_failed(
        self,
        repositories: Repositories,
        message: JobMessage,
        error: Exception,
    ) -> None:
        if message.payload.transaction_id is not None:
            repositories.transactions.transition_status(
                message.payload.transaction_id,
                target=TransactionStatus.ERROR,
                error_message=str(error),
            )
        fail_batch(repositories, message.payload.batch_id, self.error_code)
