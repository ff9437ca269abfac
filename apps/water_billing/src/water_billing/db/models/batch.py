"""Billing batch ORM model."""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base, enum_values
from water_billing.domain.financial_year import FinancialYear


class BatchType(enum.StrEnum):
    ANNUAL = "annual"
    SUPPLEMENTARY = "supplementary"
    TWO_PART_TARIFF = "two_part_tariff"


class BatchSeason(enum.StrEnum):
    SUMMER = "summer"
    WINTER_ALL_YEAR = "winter_all_year"
    ALL_YEAR = "all_year"


class BatchStatus(enum.StrEnum):
    """Batch lifecycle states."""

    PROCESSING = "processing"
    READY = "ready"
    SENT = "sent"
    EMPTY = "empty"
    ERROR = "error"


class BatchErrorCode(enum.StrEnum):
    """Stage-specific failure reasons recorded on errored batches."""

    FAILED_TO_POPULATE_CHARGE_VERSIONS = "failed_to_populate_charge_versions"
    FAILED_TO_PROCESS_CHARGE_VERSIONS = "failed_to_process_charge_versions"
    FAILED_TO_PREPARE_TRANSACTIONS = "failed_to_prepare_transactions"
    FAILED_TO_CREATE_CHARGE = "failed_to_create_charge"
    FAILED_TO_REFRESH_TOTALS = "failed_to_refresh_totals"
    FAILED_TO_DELETE_BATCH = "failed_to_delete_batch"


class Batch(Base):
    """One billing run for a region over one or more financial years."""

    __tablename__ = "batches"
    __table_args__ = (
        CheckConstraint(
            "start_financial_year_ending <= end_financial_year_ending",
            name="ck_batches_financial_year_order",
        ),
        CheckConstraint(
            "(status = 'error' AND error_code IS NOT NULL) "
            "OR (status != 'error' AND error_code IS NULL)",
            name="ck_batches_error_code_matches_status",
        ),
        Index("ix_batches_region_status", "region_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    region_id: Mapped[UUID] = mapped_column(ForeignKey("regions.id"), nullable=False)
    batch_type: Mapped[BatchType] = mapped_column(
        Enum(
            BatchType,
            name="batch_type",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    season: Mapped[BatchSeason] = mapped_column(
        Enum(
            BatchSeason,
            name="batch_season",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    start_financial_year_ending: Mapped[int] = mapped_column(Integer, nullable=False)
    end_financial_year_ending: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(
            BatchStatus,
            name="batch_status",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    error_code: Mapped[BatchErrorCode | None] = mapped_column(
        Enum(
            BatchErrorCode,
            name="batch_error_code",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bill_run_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invoice_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credit_note_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invoice_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    credit_note_value: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    net_total: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    prepared_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    generate_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    region: Mapped[Any] = relationship("Region")

    @property
    def start_year(self) -> FinancialYear:
        return FinancialYear(year_ending=self.start_financial_year_ending)

    @property
    def end_year(self) -> FinancialYear:
        return FinancialYear(year_ending=self.end_financial_year_ending)

    @property
    def is_summer(self) -> bool:
        return self.season == BatchSeason.SUMMER
