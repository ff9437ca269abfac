"""Billing transaction ORM model."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    false,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base, enum_values
from water_billing.domain.charging_facts import ChargingFacts


class TransactionStatus(enum.StrEnum):
    """Transaction states while it is submitted to the Charge Module."""

    CANDIDATE = "candidate"
    CHARGE_CREATED = "charge_created"
    APPROVED = "approved"
    ERROR = "error"


class Transaction(Base):
    """One charge line on an invoice licence.

    Charging fact columns are written once at creation. Afterwards only the
    status, the external id and the Charge Module calculation columns change.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "billable_days >= 0 AND authorised_days >= 0",
            name="ck_transactions_days_non_negative",
        ),
        CheckConstraint(
            "charge_period_end >= charge_period_start",
            name="ck_transactions_charge_period_order",
        ),
        Index("ix_transactions_batch_status", "batch_id", "status"),
        Index("ix_transactions_fingerprint", "fingerprint"),
        Index(
            "ix_transactions_external_id",
            "external_id",
            postgresql_where=text("external_id IS NOT NULL"),
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_licence_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice_licences.id", ondelete="CASCADE"),
        nullable=False,
    )
    charge_version_year_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("charge_version_years.id", ondelete="SET NULL"),
        nullable=True,
    )
    charge_element_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("charge_elements.id"),
        nullable=True,
    )
    source_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("transactions.id"),
        nullable=True,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(
            TransactionStatus,
            name="transaction_status",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    is_credit: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    charge_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    charge_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    billable_days: Mapped[int] = mapped_column(Integer, nullable=False)
    authorised_days: Mapped[int] = mapped_column(Integer, nullable=False)
    volume: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_compensation_charge: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_new_licence: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_two_part_tariff: Mapped[bool] = mapped_column(Boolean, nullable=False)
    agreements: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
    )
    section_126_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(8, 4), nullable=True
    )
    invoice_account_number: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    season: Mapped[str] = mapped_column(String(32), nullable=False)
    loss: Mapped[str] = mapped_column(String(32), nullable=False)
    licence_number: Mapped[str] = mapped_column(String(64), nullable=False)
    region_code: Mapped[str] = mapped_column(String(8), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_minimum_charge: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    is_de_minimis: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    is_volume_review_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    calc_source_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 6), nullable=True
    )
    calc_season_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 6), nullable=True
    )
    calc_loss_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 6), nullable=True
    )
    calc_suc_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 6), nullable=True
    )
    calc_s126_factor: Mapped[str | None] = mapped_column(String(32), nullable=True)
    calc_s127_factor: Mapped[str | None] = mapped_column(String(32), nullable=True)
    calc_eiuc_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 6), nullable=True
    )
    calc_eiuc_source_factor: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 6), nullable=True
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

    invoice_licence: Mapped[Any] = relationship(
        "InvoiceLicence",
        back_populates="transactions",
    )

    def charging_facts(self) -> ChargingFacts:
        """Rebuild the immutable charging facts stored on this row."""

        return ChargingFacts(
            charge_period_start=self.charge_period_start,
            charge_period_end=self.charge_period_end,
            billable_days=self.billable_days,
            authorised_days=self.authorised_days,
            volume=self.volume,
            description=self.description,
            is_compensation_charge=self.is_compensation_charge,
            is_new_licence=self.is_new_licence,
            agreements=tuple(self.agreements),
            invoice_account_number=self.invoice_account_number,
            source=self.source,
            season=self.season,
            loss=self.loss,
            licence_number=self.licence_number,
            region_code=self.region_code,
            is_two_part_tariff=self.is_two_part_tariff,
        )

    def apply_charging_facts(self, facts: ChargingFacts) -> None:
        """Copy validated charging facts and their fingerprint onto the row."""

        self.charge_period_start = facts.charge_period_start
        self.charge_period_end = facts.charge_period_end
        self.billable_days = facts.billable_days
        self.authorised_days = facts.authorised_days
        self.volume = facts.volume
        self.description = facts.description
        self.is_compensation_charge = facts.is_compensation_charge
        self.is_new_licence = facts.is_new_licence
        self.agreements = list(facts.agreements)
        self.invoice_account_number = facts.invoice_account_number
        self.source = facts.source
        self.season = facts.season
        self.loss = facts.loss
        self.licence_number = facts.licence_number
        self.region_code = facts.region_code
        self.is_two_part_tariff = facts.is_two_part_tariff
        self.fingerprint = facts.fingerprint()
