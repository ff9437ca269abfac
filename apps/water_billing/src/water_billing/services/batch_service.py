"""Batch commands: create, approve, delete and inspect billing batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from water_billing.core.settings import Settings
from water_billing.db.models.batch import (
    Batch,
    BatchErrorCode,
    BatchSeason,
    BatchStatus,
    BatchType,
)
from water_billing.db.models.billing_job import BillingJobStatus
from water_billing.db.models.invoice import Invoice
from water_billing.db.models.transaction import Transaction, TransactionStatus
from water_billing.domain.errors import (
    BatchConflictError,
    InvalidStatusTransitionError,
    LedgerClientError,
    LedgerError,
    NotFoundError,
    ValidationError,
    compose_error_message,
)
from water_billing.domain.state_machine import ensure_batch_transition
from water_billing.jobs.messages import StageName, create_message
from water_billing.jobs.queue import JobQueue
from water_billing.repositories.batch_repository import BatchRepository
from water_billing.repositories.charge_version_year_repository import (
    ChargeVersionYearRepository,
)
from water_billing.repositories.invoice_repository import InvoiceRepository
from water_billing.repositories.transaction_repository import TransactionRepository

logger = logging.getLogger(__name__)


class SessionProtocol(Protocol):
    """Subset of SQLAlchemy session APIs used by this service."""

    def commit(self) -> None: ...
    def rollback(self) -> None: ...


class BillRunCommands(Protocol):
    def approve_bill_run(self, bill_run_id: str) -> None: ...

    def send_bill_run(self, bill_run_id: str) -> None: ...

    def delete_bill_run(self, bill_run_id: str) -> None: ...

    def delete_invoice(self, bill_run_id: str, invoice_id: str) -> None: ...


@dataclass(slots=True, frozen=True)
class CreateBatchInput:
    """Input model for starting a billing run."""

    region_code: str
    batch_type: BatchType
    financial_year_ending: int
    season: BatchSeason = BatchSeason.ALL_YEAR


@dataclass(slots=True, frozen=True)
class JobSettings:
    retry_limit: int
    backoff_seconds: float
    supplementary_years: int


def batch_not_found(batch_id: UUID) -> NotFoundError:
    return NotFoundError(
        message=compose_error_message(
            cause=f"Batch {batch_id} does not exist.",
            action="Check the batch id and try again.",
        ),
        details={"batch_id": str(batch_id)},
    )


class BatchService:
    """Coordinates batch use cases outside the job pipeline."""

    def __init__(
        self,
        *,
        session: SessionProtocol,
        batch_repository: BatchRepository,
        charge_version_year_repository: ChargeVersionYearRepository,
        invoice_repository: InvoiceRepository,
        transaction_repository: TransactionRepository,
        job_queue: JobQueue,
        charge_module: BillRunCommands,
        job_settings: JobSettings,
    ) -> None:
        self._session = session
        self._batch_repository = batch_repository
        self._charge_version_year_repository = charge_version_year_repository
        self._invoice_repository = invoice_repository
        self._transaction_repository = transaction_repository
        self._job_queue = job_queue
        self._charge_module = charge_module
        self._job_settings = job_settings

    def create_batch(self, payload: CreateBatchInput) -> Batch:
        """Create a processing batch and queue its populate stage."""

        region = self._batch_repository.get_region_by_code(payload.region_code)
        if region is None:
            raise NotFoundError(
                message=compose_error_message(
                    cause=f"Region {payload.region_code} does not exist.",
                    action="Use an existing region code.",
                ),
                details={"region_code": payload.region_code},
            )

        if payload.batch_type == BatchType.TWO_PART_TARIFF:
            if payload.season == BatchSeason.ALL_YEAR:
                raise ValidationError(
                    message=compose_error_message(
                        cause="Two-part tariff batches must be summer or winter/all year.",
                        action="Choose the summer or winter_all_year season.",
                    ),
                    details={"season": str(payload.season)},
                )
        elif payload.season != BatchSeason.ALL_YEAR:
            raise ValidationError(
                message=compose_error_message(
                    cause=f"{payload.batch_type} batches cover the whole year.",
                    action="Use the all_year season.",
                ),
                details={"season": str(payload.season)},
            )

        live_batch = self._batch_repository.find_live_in_region(region.id)
        if live_batch is not None:
            raise BatchConflictError(
                details={
                    "region_code": payload.region_code,
                    "batch_id": str(live_batch.id),
                    "status": str(live_batch.status),
                }
            )

        start_year = payload.financial_year_ending
        if payload.batch_type == BatchType.SUPPLEMENTARY:
            start_year = payload.financial_year_ending - self._job_settings.supplementary_years

        try:
            batch = self._batch_repository.add(
                region_id=region.id,
                batch_type=payload.batch_type,
                season=payload.season,
                start_financial_year_ending=start_year,
                end_financial_year_ending=payload.financial_year_ending,
            )
            self._job_queue.enqueue(
                create_message(
                    StageName.POPULATE,
                    batch_id=batch.id,
                    retry_limit=self._job_settings.retry_limit,
                    backoff_seconds=self._job_settings.backoff_seconds,
                )
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "batch_created",
            extra={
                "batch_id": str(batch.id),
                "region_code": payload.region_code,
                "batch_type": str(payload.batch_type),
                "start_financial_year_ending": start_year,
                "end_financial_year_ending": payload.financial_year_ending,
            },
        )
        return batch

    def get_batch(self, batch_id: UUID) -> Batch:
        batch = self._batch_repository.get(batch_id)
        if batch is None:
            raise batch_not_found(batch_id)
        return batch

    def approve_batch(self, batch_id: UUID) -> Batch:
        """Approve and send a ready batch; ledger failures leave it ready."""

        batch = self.get_batch(batch_id)
        ensure_batch_transition(current=batch.status, target=BatchStatus.SENT)
        if batch.external_id is None:
            raise NotFoundError(
                message=compose_error_message(
                    cause=f"Batch {batch_id} has no Charge Module bill run.",
                    action="Rebuild the batch.",
                ),
                details={"batch_id": str(batch_id)},
            )

        self._charge_module.approve_bill_run(batch.external_id)
        self._charge_module.send_bill_run(batch.external_id)

        try:
            moved = self._batch_repository.transition_status(
                batch.id,
                target=BatchStatus.SENT,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        if not moved:
            raise InvalidStatusTransitionError(details={"batch_id": str(batch_id)})

        logger.info("batch_sent", extra={"batch_id": str(batch.id)})
        return self.get_batch(batch_id)

    def refresh_batch(self, batch_id: UUID) -> None:
        """Queue another reconciliation of a ready batch with its bill run."""

        batch = self.get_batch(batch_id)
        if batch.status != BatchStatus.READY:
            raise InvalidStatusTransitionError(
                message=compose_error_message(
                    cause=f"Batch {batch_id} is {batch.status}, not ready.",
                    action="Wait for the batch to finish processing.",
                ),
                details={"batch_id": str(batch_id), "status": str(batch.status)},
            )

        try:
            job, created = self._job_queue.enqueue(
                create_message(
                    StageName.REFRESH_TOTALS,
                    batch_id=batch.id,
                    retry_limit=self._job_settings.retry_limit,
                    backoff_seconds=self._job_settings.backoff_seconds,
                )
            )
            if not created and job.status in (
                BillingJobStatus.COMPLETED,
                BillingJobStatus.FAILED,
            ):
                self._job_queue.reopen(job)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("batch_refresh_requested", extra={"batch_id": str(batch_id)})

    def delete_batch(self, batch_id: UUID) -> None:
        """Delete the ledger bill run, then every local row of the batch.

        The batch row stays locked until the rows are gone, so a prepare job
        cannot open a bill run behind the delete. A bill run the ledger no
        longer knows counts as deleted.
        """

        batch = self._batch_repository.get_for_update(batch_id)
        if batch is None:
            raise batch_not_found(batch_id)
        if batch.status == BatchStatus.SENT:
            raise InvalidStatusTransitionError(
                message=compose_error_message(
                    cause="Sent batches cannot be deleted.",
                    action="Raise a supplementary batch to correct charges.",
                ),
                details={"batch_id": str(batch_id)},
            )

        if batch.external_id is not None:
            try:
                self._delete_bill_run(batch.id, batch.external_id)
            except LedgerError:
                logger.exception(
                    "batch_delete_failed",
                    extra={"batch_id": str(batch.id), "external_id": batch.external_id},
                )
                try:
                    self._batch_repository.transition_status(
                        batch.id,
                        target=BatchStatus.ERROR,
                        error_code=BatchErrorCode.FAILED_TO_DELETE_BATCH,
                    )
                    self._session.commit()
                except Exception:
                    self._session.rollback()
                    raise
                raise

        try:
            self._job_queue.delete_for_batch(batch.id)
            self._transaction_repository.delete_for_batch(batch.id)
            self._invoice_repository.delete_for_batch(batch.id)
            self._charge_version_year_repository.delete_for_batch(batch.id)
            self._batch_repository.delete(batch.id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("batch_deleted", extra={"batch_id": str(batch_id)})

    def _delete_bill_run(self, batch_id: UUID, external_id: str) -> None:
        try:
            self._charge_module.delete_bill_run(external_id)
        except LedgerClientError as exc:
            if exc.details.get("status_code") != HTTPStatus.NOT_FOUND:
                raise
            logger.warning(
                "ledger_bill_run_already_deleted",
                extra={"batch_id": str(batch_id), "external_id": external_id},
            )

    def delete_invoice(self, batch_id: UUID, invoice_id: UUID) -> None:
        """Remove one invoice from the bill run and from the batch."""

        batch = self.get_batch(batch_id)
        if batch.status == BatchStatus.SENT:
            raise InvalidStatusTransitionError(
                message=compose_error_message(
                    cause="Invoices of sent batches cannot be deleted.",
                    action="Raise a supplementary batch to correct charges.",
                ),
                details={"batch_id": str(batch_id)},
            )
        invoice = self.get_invoice(batch_id, invoice_id)

        if batch.external_id is not None and invoice.external_id is not None:
            self._charge_module.delete_invoice(batch.external_id, invoice.external_id)

        try:
            self._invoice_repository.delete_invoice(invoice.id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "invoice_deleted",
            extra={"batch_id": str(batch_id), "invoice_id": str(invoice_id)},
        )

    def get_invoice(self, batch_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = self._invoice_repository.get(invoice_id)
        if invoice is None or invoice.batch_id != batch_id:
            raise NotFoundError(
                message=compose_error_message(
                    cause=f"Invoice {invoice_id} is not part of batch {batch_id}.",
                    action="Check the invoice and batch ids.",
                ),
                details={"batch_id": str(batch_id), "invoice_id": str(invoice_id)},
            )
        return invoice

    def get_transaction_status_counts(self, batch_id: UUID) -> dict[TransactionStatus, int]:
        self.get_batch(batch_id)
        return self._transaction_repository.count_by_status(batch_id)

    def list_transactions(
        self,
        batch_id: UUID,
        *,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        self.get_batch(batch_id)
        return self._transaction_repository.list_for_batch(batch_id, status=status)


def build_batch_service(
    session: Session,
    *,
    charge_module: BillRunCommands,
    settings: Settings,
) -> BatchService:
    """Wire a batch service to repositories bound to ``session``."""

    return BatchService(
        session=session,
        batch_repository=BatchRepository(session),
        charge_version_year_repository=ChargeVersionYearRepository(session),
        invoice_repository=InvoiceRepository(session),
        transaction_repository=TransactionRepository(session),
        job_queue=JobQueue(session),
        charge_module=charge_module,
        job_settings=JobSettings(
            retry_limit=settings.job_retry_limit,
            backoff_seconds=settings.job_backoff_seconds,
            supplementary_years=settings.supplementary_years,
        ),
    )
