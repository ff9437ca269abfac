"""Queue message schema shared by every billing pipeline stage."""

from __future__ import annotations

import enum
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class StageName(enum.StrEnum):
    """Pipeline stages in execution order."""

    POPULATE = "populate"
    PROCESS = "process"
    PREPARE = "prepare"
    CREATE_CHARGE = "create-charge"
    REFRESH_TOTALS = "refresh-totals"


class BackoffOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["exponential"] = "exponential"
    delay_seconds: float = Field(default=5.0, ge=0)


class JobPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: UUID
    unit_id: UUID | None = None
    transaction_id: UUID | None = None
    event_id: UUID = Field(default_factory=uuid4)


class JobOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str = Field(min_length=1, max_length=255)
    retry_limit: int = Field(ge=1)
    backoff: BackoffOptions = Field(default_factory=BackoffOptions)


class JobMessage(BaseModel):
    """Durable description of one stage execution."""

    model_config = ConfigDict(frozen=True)

    stage_name: StageName
    payload: JobPayload
    options: JobOptions


def build_job_id(
    stage_name: StageName,
    batch_id: UUID,
    item_id: UUID | None = None,
) -> str:
    """Deterministic job id, so one unit of work is queued at most once."""

    job_id = f"billing.{stage_name}.{batch_id}"
    if item_id is not None:
        job_id = f"{job_id}.{item_id}"
    return job_id


def create_message(
    stage_name: StageName,
    *,
    batch_id: UUID,
    unit_id: UUID | None = None,
    transaction_id: UUID | None = None,
    retry_limit: int,
    backoff_seconds: float,
) -> JobMessage:
    """Build a stage message with its deduplication id derived from the payload."""

    return JobMessage(
        stage_name=stage_name,
        payload=JobPayload(
            batch_id=batch_id,
            unit_id=unit_id,
            transaction_id=transaction_id,
        ),
        options=JobOptions(
            job_id=build_job_id(stage_name, batch_id, unit_id or transaction_id),
            retry_limit=retry_limit,
            backoff=BackoffOptions(delay_seconds=backoff_seconds),
        ),
    )
