"""API response schemas."""

from water_billing.api.schemas.batches import (
    BatchResponse,
    TransactionListResponse,
    TransactionResponse,
)

__all__ = [
    "BatchResponse",
    "TransactionListResponse",
    "TransactionResponse",
]
