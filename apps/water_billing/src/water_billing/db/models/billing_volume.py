"""Two-part tariff billing volume ORM model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from water_billing.db.base import Base


class BillingVolume(Base):
    """Measured volume matched to a charge element for one season and year."""

    __tablename__ = "billing_volumes"
    __table_args__ = (
        Index(
            "uq_billing_volumes_element_year_season",
            "charge_element_id",
            "financial_year_ending",
            "is_summer",
            unique=True,
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    charge_element_id: Mapped[UUID] = mapped_column(
        ForeignKey("charge_elements.id", ondelete="CASCADE"),
        nullable=False,
    )
    financial_year_ending: Mapped[int] = mapped_column(Integer, nullable=False)
    is_summer: Mapped[bool] = mapped_column(Boolean, nullable=False)
    calculated_volume: Mapped[Decimal | None] = mapped_column(
        Numeric(20, 6), nullable=True
    )
    volume: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    is_approved: Mapped[bool] = mapped_column(
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
