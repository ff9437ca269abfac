"""Pydantic schemas for batch inspection endpoints."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from water_billing.db.models.batch import (
    Batch,
    BatchErrorCode,
    BatchSeason,
    BatchStatus,
    BatchType,
)
from water_billing.db.models.transaction import Transaction, TransactionStatus


class BatchResponse(BaseModel):
    """Batch header with ledger totals and transaction status counts."""

    id: UUID
    region_code: str
    batch_type: BatchType
    season: BatchSeason
    start_financial_year_ending: int
    end_financial_year_ending: int
    status: BatchStatus
    error_code: BatchErrorCode | None
    external_id: str | None
    bill_run_number: int | None
    invoice_count: int | None
    credit_note_count: int | None
    invoice_value: Decimal | None
    credit_note_value: Decimal | None
    net_total: Decimal | None
    transaction_counts: dict[TransactionStatus, int]
    created_at: datetime

    @classmethod
    def from_model(
        cls,
        batch: Batch,
        *,
        transaction_counts: dict[TransactionStatus, int],
    ) -> BatchResponse:
        return cls(
            id=batch.id,
            region_code=batch.region.code,
            batch_type=batch.batch_type,
            season=batch.season,
            start_financial_year_ending=batch.start_financial_year_ending,
            end_financial_year_ending=batch.end_financial_year_ending,
            status=batch.status,
            error_code=batch.error_code,
            external_id=batch.external_id,
            bill_run_number=batch.bill_run_number,
            invoice_count=batch.invoice_count,
            credit_note_count=batch.credit_note_count,
            invoice_value=batch.invoice_value,
            credit_note_value=batch.credit_note_value,
            net_total=batch.net_total,
            transaction_counts=transaction_counts,
            created_at=batch.created_at,
        )


class TransactionResponse(BaseModel):
    """Public transaction representation."""

    id: UUID
    licence_number: str
    invoice_account_number: str
    status: TransactionStatus
    description: str
    charge_period_start: date
    charge_period_end: date
    billable_days: int
    authorised_days: int
    volume: Decimal | None
    value: Decimal | None
    is_credit: bool
    is_compensation_charge: bool
    is_two_part_tariff: bool
    is_minimum_charge: bool
    is_de_minimis: bool
    external_id: str | None
    source_transaction_id: UUID | None
    error_message: str | None

    @classmethod
    def from_model(cls, transaction: Transaction) -> TransactionResponse:
        return cls(
            id=transaction.id,
            licence_number=transaction.licence_number,
            invoice_account_number=transaction.invoice_account_number,
            status=transaction.status,
            description=transaction.description,
            charge_period_start=transaction.charge_period_start,
            charge_period_end=transaction.charge_period_end,
            billable_days=transaction.billable_days,
            authorised_days=transaction.authorised_days,
            volume=transaction.volume,
            value=transaction.value,
            is_credit=transaction.is_credit,
            is_compensation_charge=transaction.is_compensation_charge,
            is_two_part_tariff=transaction.is_two_part_tariff,
            is_minimum_charge=transaction.is_minimum_charge,
            is_de_minimis=transaction.is_de_minimis,
            external_id=transaction.external_id,
            source_transaction_id=transaction.source_transaction_id,
            error_message=transaction.error_message,
        )


class TransactionListResponse(BaseModel):
    """Transactions of one batch, optionally filtered by status."""

    items: list[TransactionResponse]
    total: int = Field(ge=0)

    @classmethod
    def from_models(cls, items: list[Transaction]) -> TransactionListResponse:
        return cls(
            items=[TransactionResponse.from_model(item) for item in items],
            total=len(items),
        )
