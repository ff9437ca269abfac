"""Persistence operations for billing transactions."""

from __future__ import annotations

from collections.abc import Collection
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, delete, func, select, update
from sqlalchemy.orm import Session

from water_billing.db.models.batch import Batch, BatchStatus
from water_billing.db.models.invoice import Invoice, InvoiceLicence
from water_billing.db.models.transaction import Transaction, TransactionStatus
from water_billing.domain.charging_facts import ChargingFacts
from water_billing.domain.state_machine import transaction_statuses_leading_to


class TransactionRepository:
    """Repository for transactions and their per-batch aggregates."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, transaction_id: UUID) -> Transaction | None:
        statement = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return self._session.scalar(statement)

    def add(
        self,
        *,
        batch_id: UUID,
        invoice_licence_id: UUID,
        facts: ChargingFacts,
        charge_version_year_id: UUID | None = None,
        charge_element_id: UUID | None = None,
        source_transaction_id: UUID | None = None,
        status: TransactionStatus = TransactionStatus.CANDIDATE,
        value: Decimal | None = None,
        is_credit: bool = False,
        section_126_factor: Decimal | None = None,
        external_id: str | None = None,
        is_minimum_charge: bool = False,
        is_volume_review_required: bool = False,
    ) -> Transaction:
        """Persist one transaction built from validated charging facts."""

        now = datetime.now(tz=UTC)
        transaction = Transaction(
            batch_id=batch_id,
            invoice_licence_id=invoice_licence_id,
            charge_version_year_id=charge_version_year_id,
            charge_element_id=charge_element_id,
            source_transaction_id=source_transaction_id,
            status=status,
            value=value,
            is_credit=is_credit,
            section_126_factor=section_126_factor,
            external_id=external_id,
            is_minimum_charge=is_minimum_charge,
            is_de_minimis=False,
            is_volume_review_required=is_volume_review_required,
            created_at=now,
            updated_at=now,
        )
        transaction.apply_charging_facts(facts)
        self._session.add(transaction)
        self._session.flush()
        return transaction

    def list_for_batch(
        self,
        batch_id: UUID,
        *,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        statement = select(Transaction).where(Transaction.batch_id == batch_id)
        if status is not None:
            statement = statement.where(Transaction.status == status)
        statement = statement.order_by(
            Transaction.licence_number,
            Transaction.charge_period_start,
            Transaction.created_at,
        )
        return list(self._session.scalars(statement))

    def list_ids_for_batch(
        self,
        batch_id: UUID,
        *,
        status: TransactionStatus,
    ) -> list[UUID]:
        statement = select(Transaction.id).where(
            Transaction.batch_id == batch_id,
            Transaction.status == status,
        )
        return list(self._session.scalars(statement))

    def count_by_status(self, batch_id: UUID) -> dict[TransactionStatus, int]:
        """Aggregate transaction counts per status for stage gating."""

        statement = (
            select(Transaction.status, func.count())
            .where(Transaction.batch_id == batch_id)
            .group_by(Transaction.status)
        )
        counts = dict.fromkeys(TransactionStatus, 0)
        for status, total in self._session.execute(statement):
            counts[TransactionStatus(status)] = int(total)
        return counts

    def list_historical(
        self,
        *,
        region_id: UUID,
        licence_numbers: Collection[str],
        financial_year_endings: Collection[int],
    ) -> list[tuple[Transaction, Invoice]]:
        """Transactions already sent for the given licences and years.

        Only rows accepted by the Charge Module count, and ledger-generated
        minimum charge top-ups are left to the ledger.
        """

        if not licence_numbers or not financial_year_endings:
            return []
        statement = (
            select(Transaction, Invoice)
            .join(InvoiceLicence, InvoiceLicence.id == Transaction.invoice_licence_id)
            .join(Invoice, Invoice.id == InvoiceLicence.invoice_id)
            .join(Batch, Batch.id == Invoice.batch_id)
            .where(
                Batch.region_id == region_id,
                Batch.status == BatchStatus.SENT,
                Transaction.licence_number.in_(list(licence_numbers)),
                Invoice.financial_year_ending.in_(list(financial_year_endings)),
                Transaction.status.in_(
                    (TransactionStatus.CHARGE_CREATED, TransactionStatus.APPROVED)
                ),
                Transaction.is_minimum_charge.is_(False),
            )
            .order_by(Batch.created_at, Transaction.created_at)
        )
        return [(row[0], row[1]) for row in self._session.execute(statement)]

    def list_reversed_source_ids(self, batch_id: UUID) -> set[UUID]:
        statement = select(Transaction.source_transaction_id).where(
            Transaction.batch_id == batch_id,
            Transaction.source_transaction_id.is_not(None),
        )
        return {value for value in self._session.scalars(statement) if value}

    def transition_status(
        self,
        transaction_id: UUID,
        *,
        target: TransactionStatus,
        external_id: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Conditionally move one transaction out of candidate status."""

        values: dict[str, Any] = {
            "status": target,
            "updated_at": datetime.now(tz=UTC),
        }
        if external_id is not None:
            values["external_id"] = external_id
        if error_message is not None:
            values["error_message"] = error_message
        statement = (
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.status.in_(transaction_statuses_leading_to(target)),
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = cast(CursorResult[Any], self._session.execute(statement))
        return result.rowcount == 1

    def delete_for_charge_version_year(self, charge_version_year_id: UUID) -> None:
        self._session.execute(
            delete(Transaction)
            .where(Transaction.charge_version_year_id == charge_version_year_id)
            .execution_options(synchronize_session=False)
        )

    def delete_by_ids(self, transaction_ids: Collection[UUID]) -> None:
        if not transaction_ids:
            return
        self._session.execute(
            delete(Transaction)
            .where(Transaction.id.in_(list(transaction_ids)))
            .execution_options(synchronize_session=False)
        )

    def delete_for_batch(self, batch_id: UUID) -> None:
        self._session.execute(
            delete(Transaction)
            .where(Transaction.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
