"""Licence ORM model."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, String, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base
from water_billing.domain.date_range import DateRange


class Licence(Base):
    """Abstraction licence as imported from the licence registry."""

    __tablename__ = "licences"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    licence_number: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    region_id: Mapped[UUID] = mapped_column(ForeignKey("regions.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_water_undertaker: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    regional_charging_area: Mapped[str] = mapped_column(String(64), nullable=False)
    historical_area_code: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    region: Mapped[Any] = relationship("Region")
    charge_versions: Mapped[list[Any]] = relationship(
        "ChargeVersion",
        back_populates="licence",
    )
    agreements: Mapped[list[Any]] = relationship(
        "LicenceAgreement",
        back_populates="licence",
    )

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)
