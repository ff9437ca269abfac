"""Persistence operations for charge version years."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from water_billing.db.models.charge_version_year import (
    ChargeVersionYear,
    ChargeVersionYearStatus,
    TransactionType,
)
from water_billing.domain.state_machine import charge_version_year_statuses_leading_to


class ChargeVersionYearRepository:
    """Repository for the process-stage units of work of a batch."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, charge_version_year_id: UUID) -> ChargeVersionYear | None:
        statement = (
            select(ChargeVersionYear)
            .where(ChargeVersionYear.id == charge_version_year_id)
            .execution_options(populate_existing=True)
        )
        return self._session.scalar(statement)

    def find(
        self,
        *,
        batch_id: UUID,
        charge_version_id: UUID,
        financial_year_ending: int,
        transaction_type: TransactionType,
        is_summer: bool,
    ) -> ChargeVersionYear | None:
        statement = select(ChargeVersionYear).where(
            ChargeVersionYear.batch_id == batch_id,
            ChargeVersionYear.charge_version_id == charge_version_id,
            ChargeVersionYear.financial_year_ending == financial_year_ending,
            ChargeVersionYear.transaction_type == transaction_type,
            ChargeVersionYear.is_summer == is_summer,
        )
        return self._session.scalar(statement)

    def create_if_missing(
        self,
        *,
        batch_id: UUID,
        charge_version_id: UUID,
        financial_year_ending: int,
        transaction_type: TransactionType,
        is_summer: bool,
    ) -> tuple[ChargeVersionYear, bool]:
        """Create a processing unit idempotently for its natural key."""

        duplicate_error: IntegrityError | None = None
        with self._session.begin_nested():
            now = datetime.now(tz=UTC)
            charge_version_year = ChargeVersionYear(
                batch_id=batch_id,
                charge_version_id=charge_version_id,
                financial_year_ending=financial_year_ending,
                transaction_type=transaction_type,
                is_summer=is_summer,
                status=ChargeVersionYearStatus.PROCESSING,
                created_at=now,
                updated_at=now,
            )
            self._session.add(charge_version_year)
            try:
                self._session.flush()
                return charge_version_year, True
            except IntegrityError as exc:
                duplicate_error = exc

        existing = self.find(
            batch_id=batch_id,
            charge_version_id=charge_version_id,
            financial_year_ending=financial_year_ending,
            transaction_type=transaction_type,
            is_summer=is_summer,
        )
        if existing is None:
            if duplicate_error is not None:
                raise duplicate_error
            msg = "Failed to load charge version year after idempotent insert attempt."
            raise RuntimeError(msg)
        return existing, False

    def list_for_batch(
        self,
        batch_id: UUID,
        *,
        status: ChargeVersionYearStatus | None = None,
    ) -> list[ChargeVersionYear]:
        statement = select(ChargeVersionYear).where(
            ChargeVersionYear.batch_id == batch_id
        )
        if status is not None:
            statement = statement.where(ChargeVersionYear.status == status)
        statement = statement.order_by(
            ChargeVersionYear.financial_year_ending,
            ChargeVersionYear.created_at,
        )
        return list(self._session.scalars(statement))

    def count_by_status(self, batch_id: UUID) -> dict[ChargeVersionYearStatus, int]:
        """Aggregate unit counts per status for stage gating."""

        statement = (
            select(ChargeVersionYear.status, func.count())
            .where(ChargeVersionYear.batch_id == batch_id)
            .group_by(ChargeVersionYear.status)
        )
        counts = dict.fromkeys(ChargeVersionYearStatus, 0)
        for status, total in self._session.execute(statement):
            counts[ChargeVersionYearStatus(status)] = int(total)
        return counts

    def transition_status(
        self,
        charge_version_year_id: UUID,
        *,
        target: ChargeVersionYearStatus,
    ) -> bool:
        statement = (
            update(ChargeVersionYear)
            .where(
                ChargeVersionYear.id == charge_version_year_id,
                ChargeVersionYear.status.in_(
                    charge_version_year_statuses_leading_to(target)
                ),
            )
            .values(status=target, updated_at=datetime.now(tz=UTC))
            .execution_options(synchronize_session="fetch")
        )
        result = cast(CursorResult[Any], self._session.execute(statement))
        return result.rowcount == 1

    def delete_for_batch(self, batch_id: UUID) -> None:
        self._session.execute(
            delete(ChargeVersionYear)
            .where(ChargeVersionYear.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
