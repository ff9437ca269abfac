"""Status transition rules for batches, charge version years and transactions."""

from __future__ import annotations

from enum import StrEnum
from typing import TypeVar

from water_billing.db.models.batch import BatchStatus
from water_billing.db.models.charge_version_year import ChargeVersionYearStatus
from water_billing.db.models.transaction import TransactionStatus
from water_billing.domain.errors import (
    InvalidStatusTransitionError,
    compose_error_message,
)

S = TypeVar("S", bound=StrEnum)

BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PROCESSING: frozenset(
        {BatchStatus.EMPTY, BatchStatus.READY, BatchStatus.ERROR}
    ),
    BatchStatus.READY: frozenset({BatchStatus.SENT, BatchStatus.ERROR}),
    BatchStatus.SENT: frozenset(),
    BatchStatus.EMPTY: frozenset(),
    BatchStatus.ERROR: frozenset(),
}

CHARGE_VERSION_YEAR_TRANSITIONS: dict[
    ChargeVersionYearStatus, frozenset[ChargeVersionYearStatus]
] = {
    ChargeVersionYearStatus.PROCESSING: frozenset(
        {ChargeVersionYearStatus.READY, ChargeVersionYearStatus.ERROR}
    ),
    ChargeVersionYearStatus.READY: frozenset(),
    ChargeVersionYearStatus.ERROR: frozenset(),
}

TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.CANDIDATE: frozenset(
        {
            TransactionStatus.CHARGE_CREATED,
            TransactionStatus.APPROVED,
            TransactionStatus.ERROR,
        }
    ),
    TransactionStatus.CHARGE_CREATED: frozenset(),
    TransactionStatus.APPROVED: frozenset(),
    TransactionStatus.ERROR: frozenset(),
}

LIVE_BATCH_STATUSES = (BatchStatus.PROCESSING, BatchStatus.READY)


def _can_transition(
    table: dict[S, frozenset[S]],
    enum_cls: type[S],
    current: str,
    target: str,
) -> bool:
    return enum_cls(target) in table[enum_cls(current)]


def can_transition_batch_status(*, current: str, target: str) -> bool:
    return _can_transition(BATCH_TRANSITIONS, BatchStatus, current, target)


def can_transition_charge_version_year_status(*, current: str, target: str) -> bool:
    return _can_transition(
        CHARGE_VERSION_YEAR_TRANSITIONS,
        ChargeVersionYearStatus,
        current,
        target,
    )


def can_transition_transaction_status(*, current: str, target: str) -> bool:
    return _can_transition(TRANSACTION_TRANSITIONS, TransactionStatus, current, target)


def ensure_batch_transition(*, current: BatchStatus, target: BatchStatus) -> None:
    """Raise when a batch cannot move from ``current`` to ``target``."""

    if not can_transition_batch_status(current=current, target=target):
        raise InvalidStatusTransitionError(
            message=compose_error_message(
                cause=f"Batch cannot move from {current} to {target}.",
                action="Reload the batch and check its current status.",
            ),
            details={"current": str(current), "target": str(target)},
        )


def batch_statuses_leading_to(target: BatchStatus) -> tuple[BatchStatus, ...]:
    """Statuses from which a conditional update may move a batch to ``target``."""

    return tuple(
        status for status, targets in BATCH_TRANSITIONS.items() if target in targets
    )


def charge_version_year_statuses_leading_to(
    target: ChargeVersionYearStatus,
) -> tuple[ChargeVersionYearStatus, ...]:
    return tuple(
        status
        for status, targets in CHARGE_VERSION_YEAR_TRANSITIONS.items()
        if target in targets
    )


def transaction_statuses_leading_to(
    target: TransactionStatus,
) -> tuple[TransactionStatus, ...]:
    return tuple(
        status
        for status, targets in TRANSACTION_TRANSITIONS.items()
        if target in targets
    )


def resolve_batch_completion(
    *,
    candidate_count: int,
    charge_created_count: int,
) -> BatchStatus | None:
    """Batch status once charge submission settles, or None while pending.

    A batch is complete when no transaction remains a candidate. It is empty
    when none of its transactions reached the Charge Module.
    """

    if candidate_count > 0:
        return None
    if charge_created_count == 0:
        return BatchStatus.EMPTY
    return BatchStatus.READY
