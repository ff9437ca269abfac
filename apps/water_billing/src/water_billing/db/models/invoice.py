"""Invoice and invoice licence ORM models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from water_billing.db.base import Base


class Invoice(Base):
    """Charges for one billing account and financial year within a batch."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index(
            "uq_invoices_batch_account_year",
            "batch_id",
            "invoice_account_number",
            "financial_year_ending",
            unique=True,
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_account_number: Mapped[str] = mapped_column(String(32), nullable=False)
    financial_year_ending: Mapped[int] = mapped_column(Integer, nullable=False)
    net_total: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    invoice_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    credit_note_value: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_de_minimis: Mapped[bool] = mapped_column(
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

    invoice_licences: Mapped[list[InvoiceLicence]] = relationship(
        "InvoiceLicence",
        back_populates="invoice",
    )


class InvoiceLicence(Base):
    """Licence section of an invoice, with the holder snapshot at billing time."""

    __tablename__ = "invoice_licences"
    __table_args__ = (
        Index(
            "uq_invoice_licences_invoice_licence",
            "invoice_id",
            "licence_number",
            unique=True,
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    licence_id: Mapped[UUID] = mapped_column(ForeignKey("licences.id"), nullable=False)
    licence_number: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
    )
    address: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="invoice_licences")
    transactions: Mapped[list[Any]] = relationship(
        "Transaction",
        back_populates="invoice_licence",
    )
