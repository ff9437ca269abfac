"""Return requirement ORM model."""

from __future__ import annotations

import enum
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Index, false
from sqlalchemy.orm import Mapped, mapped_column

from water_billing.db.base import Base, enum_values
from water_billing.domain.date_range import DateRange


class ReturnRequirementStatus(enum.StrEnum):
    CURRENT = "current"
    SUPERSEDED = "superseded"
    DRAFT = "draft"


class ReturnRequirement(Base):
    """Obligation to submit abstraction returns in one season cycle."""

    __tablename__ = "return_requirements"
    __table_args__ = (Index("ix_return_requirements_licence_id", "licence_id"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    licence_id: Mapped[UUID] = mapped_column(
        ForeignKey("licences.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[ReturnRequirementStatus] = mapped_column(
        Enum(
            ReturnRequirementStatus,
            name="return_requirement_status",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_summer: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_two_part_tariff: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)
