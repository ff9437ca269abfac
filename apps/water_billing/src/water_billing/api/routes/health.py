"""Liveness and readiness probes for the API and the job queue behind it."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from water_billing.db.models.billing_job import BillingJobStatus
from water_billing.db.session import get_db_session
from water_billing.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", include_in_schema=False)


@router.get("/live")
def health_live() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/ready")
def health_ready(
    db_session: Annotated[Session, Depends(get_db_session)],
) -> dict[str, str | int]:
    """Ready once the billing job table answers a backlog query."""

    try:
        backlog = JobQueue(db_session).count_backlog()
    except SQLAlchemyError as exc:
        logger.warning("readiness_check_failed", extra={"error_type": type(exc).__name__})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing job queue is unavailable",
        ) from exc
    return {
        "status": "ready",
        "queued_jobs": backlog[BillingJobStatus.PENDING],
        "running_jobs": backlog[BillingJobStatus.ACTIVE],
    }
