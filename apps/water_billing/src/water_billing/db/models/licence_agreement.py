"""Licence financial agreement ORM model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base
from water_billing.domain.date_range import DateRange

TWO_PART_TARIFF_AGREEMENT = "S127"
ABATEMENT_AGREEMENT = "S126"
CANAL_AGREEMENT_PREFIX = "S130"


class LicenceAgreement(Base):
    """Financial agreement (S126, S127, S130x) applying to a licence."""

    __tablename__ = "licence_agreements"
    __table_args__ = (Index("ix_licence_agreements_licence_id", "licence_id"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    licence_id: Mapped[UUID] = mapped_column(
        ForeignKey("licences.id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    factor: Mapped[Decimal | None] = mapped_column(Numeric(8, 4), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    licence: Mapped[Any] = relationship("Licence", back_populates="agreements")

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)
