"""Read-only batch routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from water_billing.api.dependencies import get_batch_service
from water_billing.api.schemas.batches import BatchResponse, TransactionListResponse
from water_billing.db.models.transaction import TransactionStatus
from water_billing.services.batch_service import BatchService

router = APIRouter(prefix="/batches", tags=["Batches"])


@router.get(
    "/{batch_id}",
    response_model=BatchResponse,
    responses={404: {"description": "Batch not found"}},
)
def get_batch(
    batch_id: UUID,
    service: Annotated[BatchService, Depends(get_batch_service)],
) -> BatchResponse:
    """Return batch status, ledger totals and transaction counts."""

    batch = service.get_batch(batch_id)
    counts = service.get_transaction_status_counts(batch_id)
    return BatchResponse.from_model(batch, transaction_counts=counts)


@router.get(
    "/{batch_id}/transactions",
    response_model=TransactionListResponse,
    responses={404: {"description": "Batch not found"}},
)
def list_transactions(
    batch_id: UUID,
    service: Annotated[BatchService, Depends(get_batch_service)],
    status: Annotated[TransactionStatus | None, Query()] = None,
) -> TransactionListResponse:
    transactions = service.list_transactions(batch_id, status=status)
    return TransactionListResponse.from_models(transactions)
