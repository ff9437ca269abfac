"""Durable billing job queue ORM model."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from water_billing.db.base import Base, enum_values


class BillingJobStatus(enum.StrEnum):
    """Queue states of one billing job."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BillingJob(Base):
    """One queued pipeline stage execution, deduplicated by ``job_key``."""

    __tablename__ = "billing_jobs"
    __table_args__ = (
        CheckConstraint(
            "attempts >= 0",
            name="ck_billing_jobs_attempts_non_negative",
        ),
        Index("uq_billing_jobs_job_key", "job_key", unique=True),
        Index("ix_billing_jobs_status_run_after", "status", "run_after"),
        Index("ix_billing_jobs_batch_id", "batch_id"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    job_key: Mapped[str] = mapped_column(String(255), nullable=False)
    stage_name: Mapped[str] = mapped_column(String(64), nullable=False)
    batch_id: Mapped[UUID] = mapped_column(nullable=False)
    message: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
    )
    status: Mapped[BillingJobStatus] = mapped_column(
        Enum(
            BillingJobStatus,
            name="billing_job_status",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    retry_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    backoff_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    poll_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0"
    )
    run_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class BillingStageLock(Base):
    """One row per throttled stage, locked while a worker claims its jobs."""

    __tablename__ = "billing_stage_locks"

    stage_name: Mapped[str] = mapped_column(String(64), primary_key=True)
