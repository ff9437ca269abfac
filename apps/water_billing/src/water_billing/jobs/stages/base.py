"""Shared plumbing for pipeline stage handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from water_billing.core.settings import Settings
from water_billing.db.models.batch import Batch, BatchErrorCode, BatchStatus
from water_billing.db.models.charge_version_year import ChargeVersionYearStatus
from water_billing.db.models.transaction import TransactionStatus
from water_billing.domain.state_machine import resolve_batch_completion
from water_billing.infrastructure.charge_module.client import (
    BillRunSummary,
    CreatedBillRun,
    LedgerInvoiceDetail,
)
from water_billing.infrastructure.crm.client import ReferenceDataProvider
from water_billing.jobs.messages import JobMessage, StageName, create_message
from water_billing.jobs.queue import JobQueue
from water_billing.repositories.batch_repository import BatchRepository
from water_billing.repositories.charge_version_repository import (
    ChargeVersionRepository,
)
from water_billing.repositories.charge_version_year_repository import (
    ChargeVersionYearRepository,
)
from water_billing.repositories.invoice_repository import InvoiceRepository
from water_billing.repositories.transaction_repository import TransactionRepository

logger = logging.getLogger(__name__)


class ChargeModuleGateway(Protocol):
    """Charge Module operations the pipeline depends on."""

    def create_bill_run(self, region_code: str) -> CreatedBillRun: ...

    def add_transaction(self, bill_run_id: str, transaction: dict[str, object]) -> str: ...

    def generate_bill_run(self, bill_run_id: str) -> None: ...

    def get_bill_run(self, bill_run_id: str) -> BillRunSummary: ...

    def get_invoice(self, bill_run_id: str, invoice_id: str) -> LedgerInvoiceDetail: ...


@dataclass(slots=True, frozen=True)
class PipelineDependencies:
    """Process-wide collaborators handed to every stage."""

    settings: Settings
    charge_module: ChargeModuleGateway
    reference_data: ReferenceDataProvider


@dataclass(slots=True, frozen=True)
class Repositories:
    """Repositories bound to the session of one job execution."""

    session: Session
    batches: BatchRepository
    charge_versions: ChargeVersionRepository
    charge_version_years: ChargeVersionYearRepository
    invoices: InvoiceRepository
    transactions: TransactionRepository
    jobs: JobQueue

    @classmethod
    def from_session(cls, session: Session) -> Repositories:
        return cls(
            session=session,
            batches=BatchRepository(session),
            charge_versions=ChargeVersionRepository(session),
            charge_version_years=ChargeVersionYearRepository(session),
            invoices=InvoiceRepository(session),
            transactions=TransactionRepository(session),
            jobs=JobQueue(session),
        )


class Stage:
    """One pipeline stage.

    ``handle`` runs in the same transaction that completes the job.
    ``on_complete`` runs after that commit; ``on_failed`` once retries are
    exhausted. Both hooks only move the batch on terminal outcomes and may be
    replayed for a stalled batch, so they must be idempotent.
    """

    name: StageName
    error_code: BatchErrorCode

    def __init__(self, dependencies: PipelineDependencies) -> None:
        self.dependencies = dependencies

    def handle(self, repositories: Repositories, message: JobMessage) -> None:
        raise NotImplementedError

    def on_complete(self, repositories: Repositories, message: JobMessage) -> None:
        return None

    def on_failed(
        self,
        repositories: Repositories,
        message: JobMessage,
        error: Exception,
    ) -> None:
        fail_batch(repositories, message.payload.batch_id, self.error_code)

    def enqueue(
        self,
        repositories: Repositories,
        stage_name: StageName,
        *,
        batch_id: UUID,
        unit_id: UUID | None = None,
        transaction_id: UUID | None = None,
    ) -> bool:
        settings = self.dependencies.settings
        _, created = repositories.jobs.enqueue(
            create_message(
                stage_name,
                batch_id=batch_id,
                unit_id=unit_id,
                transaction_id=transaction_id,
                retry_limit=settings.job_retry_limit,
                backoff_seconds=settings.job_backoff_seconds,
            )
        )
        return created


def load_processing_batch(repositories: Repositories, batch_id: UUID) -> Batch | None:
    """Return the batch while it is still processing, otherwise None."""

    batch = repositories.batches.get(batch_id)
    if batch is None or batch.status != BatchStatus.PROCESSING:
        logger.info(
            "stage_skipped_batch_not_processing",
            extra={
                "batch_id": str(batch_id),
                "status": str(batch.status) if batch is not None else None,
            },
        )
        return None
    return batch


def fail_batch(
    repositories: Repositories,
    batch_id: UUID,
    error_code: BatchErrorCode,
) -> bool:
    moved = repositories.batches.transition_status(
        batch_id,
        target=BatchStatus.ERROR,
        error_code=error_code,
    )
    if moved:
        logger.error(
            "batch_failed",
            extra={"batch_id": str(batch_id), "error_code": str(error_code)},
        )
    return moved


def settle_batch(stage: Stage, repositories: Repositories, batch_id: UUID) -> None:
    """Move a processing batch to empty or ready once no candidate remains."""

    counts = repositories.transactions.count_by_status(batch_id)
    outcome = resolve_batch_completion(
        candidate_count=counts[TransactionStatus.CANDIDATE],
        charge_created_count=counts[TransactionStatus.CHARGE_CREATED],
    )
    if outcome is None:
        return

    if outcome == BatchStatus.EMPTY:
        repositories.invoices.delete_empty_for_batch(batch_id)
        if repositories.batches.transition_status(batch_id, target=BatchStatus.EMPTY):
            logger.info("batch_empty", extra={"batch_id": str(batch_id)})
        return

    if repositories.batches.transition_status(batch_id, target=BatchStatus.READY):
        logger.info("batch_ready", extra={"batch_id": str(batch_id)})
        stage.enqueue(repositories, StageName.REFRESH_TOTALS, batch_id=batch_id)


def queue_prepare_when_units_settled(
    stage: Stage,
    repositories: Repositories,
    batch_id: UUID,
) -> None:
    """Queue the prepare job once no charge version year is still processing."""

    counts = repositories.charge_version_years.count_by_status(batch_id)
    if counts[ChargeVersionYearStatus.PROCESSING] > 0:
        return
    if load_processing_batch(repositories, batch_id) is None:
        return
    if stage.enqueue(repositories, StageName.PREPARE, batch_id=batch_id):
        logger.info("prepare_job_queued", extra={"batch_id": str(batch_id)})
