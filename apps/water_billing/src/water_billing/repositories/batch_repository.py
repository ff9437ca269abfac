"""Persistence operations for billing batches."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, delete, select, update
from sqlalchemy.orm import Session

from water_billing.db.models.batch import (
    Batch,
    BatchErrorCode,
    BatchSeason,
    BatchStatus,
    BatchType,
)
from water_billing.db.models.region import Region
from water_billing.domain.state_machine import (
    LIVE_BATCH_STATUSES,
    batch_statuses_leading_to,
)


class BatchRepository:
    """Repository for batches and their batch-scoped aggregates."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, batch_id: UUID) -> Batch | None:
        """Fetch batch by id, refreshing any stale identity-map copy."""

        statement = (
            select(Batch)
            .where(Batch.id == batch_id)
            .execution_options(populate_existing=True)
        )
        return self._session.scalar(statement)

    def get_for_update(self, batch_id: UUID) -> Batch | None:
        """Fetch and lock one batch by id."""

        statement = (
            select(Batch)
            .where(Batch.id == batch_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalar(statement)

    def get_region(self, region_id: UUID) -> Region | None:
        return self._session.get(Region, region_id)

    def get_region_by_code(self, code: str) -> Region | None:
        return self._session.scalar(select(Region).where(Region.code == code))

    def find_live_in_region(self, region_id: UUID) -> Batch | None:
        """Return the processing or ready batch of a region, if any."""

        statement = (
            select(Batch)
            .where(
                Batch.region_id == region_id,
                Batch.status.in_(LIVE_BATCH_STATUSES),
            )
            .order_by(Batch.created_at.desc())
            .limit(1)
        )
        return self._session.scalar(statement)

    def add(
        self,
        *,
        region_id: UUID,
        batch_type: BatchType,
        season: BatchSeason,
        start_financial_year_ending: int,
        end_financial_year_ending: int,
    ) -> Batch:
        """Persist a new batch in processing status."""

        now = datetime.now(tz=UTC)
        batch = Batch(
            region_id=region_id,
            batch_type=batch_type,
            season=season,
            start_financial_year_ending=start_financial_year_ending,
            end_financial_year_ending=end_financial_year_ending,
            status=BatchStatus.PROCESSING,
            error_code=None,
            created_at=now,
            updated_at=now,
        )
        self._session.add(batch)
        self._session.flush()
        return batch

    def list_sent_two_part_tariff_batches(
        self,
        *,
        region_id: UUID,
        financial_year_ending: int,
    ) -> list[Batch]:
        """Sent two-part tariff batches of a region covering one financial year."""

        statement = select(Batch).where(
            Batch.region_id == region_id,
            Batch.batch_type == BatchType.TWO_PART_TARIFF,
            Batch.status == BatchStatus.SENT,
            Batch.start_financial_year_ending <= financial_year_ending,
            Batch.end_financial_year_ending >= financial_year_ending,
        )
        return list(self._session.scalars(statement))

    def transition_status(
        self,
        batch_id: UUID,
        *,
        target: BatchStatus,
        error_code: BatchErrorCode | None = None,
    ) -> bool:
        """Move a batch to ``target`` only if its current status allows it.

        The check and the write happen in one UPDATE so a concurrent error
        transition cannot be overwritten. Returns whether a row changed.
        """

        statement = (
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.status.in_(batch_statuses_leading_to(target)),
            )
            .values(
                status=target,
                error_code=error_code if target == BatchStatus.ERROR else None,
                updated_at=datetime.now(tz=UTC),
            )
            .execution_options(synchronize_session="fetch")
        )
        result = cast(CursorResult[Any], self._session.execute(statement))
        return result.rowcount == 1

    def set_bill_run(
        self,
        batch: Batch,
        *,
        external_id: str,
        bill_run_number: int | None,
    ) -> Batch:
        batch.external_id = external_id
        batch.bill_run_number = bill_run_number
        batch.updated_at = datetime.now(tz=UTC)
        self._session.flush()
        return batch

    def mark_prepared(self, batch: Batch) -> Batch:
        batch.prepared_at = datetime.now(tz=UTC)
        self._session.flush()
        return batch

    def mark_generate_requested(self, batch: Batch) -> Batch:
        batch.generate_requested_at = datetime.now(tz=UTC)
        self._session.flush()
        return batch

    def update_totals(
        self,
        batch: Batch,
        *,
        invoice_count: int | None,
        credit_note_count: int | None,
        invoice_value: Decimal | None,
        credit_note_value: Decimal | None,
        net_total: Decimal | None,
        bill_run_number: int | None,
    ) -> Batch:
        """Copy Charge Module bill run totals onto the batch."""

        batch.invoice_count = invoice_count
        batch.credit_note_count = credit_note_count
        batch.invoice_value = invoice_value
        batch.credit_note_value = credit_note_value
        batch.net_total = net_total
        if bill_run_number is not None:
            batch.bill_run_number = bill_run_number
        batch.updated_at = datetime.now(tz=UTC)
        self._session.flush()
        return batch

    def delete(self, batch_id: UUID) -> None:
        self._session.execute(
            delete(Batch)
            .where(Batch.id == batch_id)
            .execution_options(synchronize_session=False)
        )
