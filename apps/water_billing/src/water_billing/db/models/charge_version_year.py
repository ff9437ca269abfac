"""Charge version year ORM model (unit of work for the process stage)."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base, enum_values


class TransactionType(enum.StrEnum):
    ANNUAL = "annual"
    TWO_PART_TARIFF = "two_part_tariff"


class ChargeVersionYearStatus(enum.StrEnum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class ChargeVersionYear(Base):
    """One charge version billed for one financial year within a batch."""

    __tablename__ = "charge_version_years"
    __table_args__ = (
        Index(
            "uq_charge_version_years_unit",
            "batch_id",
            "charge_version_id",
            "financial_year_ending",
            "transaction_type",
            "is_summer",
            unique=True,
        ),
        Index("ix_charge_version_years_batch_status", "batch_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    charge_version_id: Mapped[UUID] = mapped_column(
        ForeignKey("charge_versions.id"),
        nullable=False,
    )
    financial_year_ending: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            name="transaction_type",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    is_summer: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status: Mapped[ChargeVersionYearStatus] = mapped_column(
        Enum(
            ChargeVersionYearStatus,
            name="charge_version_year_status",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
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

    charge_version: Mapped[Any] = relationship("ChargeVersion")
