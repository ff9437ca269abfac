"""Charge version and charge element ORM models."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    SmallInteger,
    String,
    Text,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base, enum_values
from water_billing.domain.abstraction_period import AbstractionPeriod
from water_billing.domain.date_range import DateRange


class ChargeVersionStatus(enum.StrEnum):
    """Charge version workflow states; only current versions are billed."""

    CURRENT = "current"
    SUPERSEDED = "superseded"
    DRAFT = "draft"


class ChargeElementSource(enum.StrEnum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    TIDAL = "tidal"
    KIELDER = "kielder"


class ChargeElementSeason(enum.StrEnum):
    SUMMER = "summer"
    WINTER = "winter"
    ALL_YEAR = "all year"


class ChargeElementLoss(enum.StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very low"


class ChargeVersion(Base):
    """Time-bounded set of charging terms for one licence."""

    __tablename__ = "charge_versions"
    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_charge_versions_date_range",
        ),
        Index("ix_charge_versions_licence_status", "licence_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    licence_id: Mapped[UUID] = mapped_column(
        ForeignKey("licences.id"),
        nullable=False,
    )
    status: Mapped[ChargeVersionStatus] = mapped_column(
        Enum(
            ChargeVersionStatus,
            name="charge_version_status",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_two_part_tariff: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    include_in_supplementary_billing: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    licence: Mapped[Any] = relationship("Licence", back_populates="charge_versions")
    charge_elements: Mapped[list[ChargeElement]] = relationship(
        "ChargeElement",
        back_populates="charge_version",
        order_by="ChargeElement.created_at",
    )

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)


class ChargeElement(Base):
    """One abstraction purpose and quantity within a charge version."""

    __tablename__ = "charge_elements"
    __table_args__ = (
        CheckConstraint(
            "authorised_annual_quantity >= 0",
            name="ck_charge_elements_authorised_non_negative",
        ),
        CheckConstraint(
            "billable_annual_quantity IS NULL OR billable_annual_quantity >= 0",
            name="ck_charge_elements_billable_non_negative",
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    charge_version_id: Mapped[UUID] = mapped_column(
        ForeignKey("charge_versions.id", ondelete="CASCADE"),
        nullable=False,
    )
    abstraction_period_start_day: Mapped[int] = mapped_column(
        SmallInteger, nullable=False
    )
    abstraction_period_start_month: Mapped[int] = mapped_column(
        SmallInteger, nullable=False
    )
    abstraction_period_end_day: Mapped[int] = mapped_column(
        SmallInteger, nullable=False
    )
    abstraction_period_end_month: Mapped[int] = mapped_column(
        SmallInteger, nullable=False
    )
    authorised_annual_quantity: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False
    )
    billable_annual_quantity: Mapped[Decimal | None] = mapped_column(
        Numeric(20, 6), nullable=True
    )
    source: Mapped[ChargeElementSource] = mapped_column(
        Enum(
            ChargeElementSource,
            name="charge_element_source",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    season: Mapped[ChargeElementSeason] = mapped_column(
        Enum(
            ChargeElementSeason,
            name="charge_element_season",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    loss: Mapped[ChargeElementLoss] = mapped_column(
        Enum(
            ChargeElementLoss,
            name="charge_element_loss",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    purpose_use_code: Mapped[str] = mapped_column(String(16), nullable=False)
    purpose_use_name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_limited_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    time_limited_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    charge_version: Mapped[ChargeVersion] = relationship(
        "ChargeVersion",
        back_populates="charge_elements",
    )

    @property
    def abstraction_period(self) -> AbstractionPeriod:
        return AbstractionPeriod(
            start_day=self.abstraction_period_start_day,
            start_month=self.abstraction_period_start_month,
            end_day=self.abstraction_period_end_day,
            end_month=self.abstraction_period_end_month,
        )

    @property
    def time_limited_period(self) -> DateRange | None:
        if self.time_limited_start_date is None:
            return None
        return DateRange(
            start=self.time_limited_start_date,
            end=self.time_limited_end_date,
        )
