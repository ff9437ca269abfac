"""Relational job queue with at-least-once delivery."""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from water_billing.db.models.batch import Batch, BatchStatus
from water_billing.db.models.billing_job import (
    BillingJob,
    BillingJobStatus,
    BillingStageLock,
)
from water_billing.jobs.messages import JobMessage, StageName

logger = logging.getLogger(__name__)


def backoff_delay_seconds(*, attempts: int, base_delay_seconds: float) -> float:
    """Exponential backoff: base, 2x base, 4x base, ... for attempts 1, 2, 3."""

    return base_delay_seconds * 2 ** max(attempts - 1, 0)


class JobQueue:
    """Durable queue stored in ``billing_jobs``.

    Jobs are claimed with ``FOR UPDATE SKIP LOCKED`` so many workers can poll
    the same table. A claimed job holds a lease; when the lease expires
    without completion the job is delivered again.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, job_id: UUID) -> BillingJob | None:
        return self._session.get(BillingJob, job_id)

    def get_by_key(self, job_key: str) -> BillingJob | None:
        return self._session.scalar(select(BillingJob).where(BillingJob.job_key == job_key))

    def enqueue(
        self,
        message: JobMessage,
        *,
        delay_seconds: float = 0,
    ) -> tuple[BillingJob, bool]:
        """Queue a message unless a job with the same id already exists."""

        existing = self.get_by_key(message.options.job_id)
        if existing is not None:
            return existing, False

        duplicate_error: IntegrityError | None = None
        with self._session.begin_nested():
            now = datetime.now(tz=UTC)
            job = BillingJob(
                job_key=message.options.job_id,
                stage_name=message.stage_name.value,
                batch_id=message.payload.batch_id,
                message=message.model_dump(mode="json"),
                status=BillingJobStatus.PENDING,
                attempts=0,
                retry_limit=message.options.retry_limit,
                backoff_seconds=message.options.backoff.delay_seconds,
                poll_count=0,
                run_after=now + timedelta(seconds=delay_seconds),
                locked_until=None,
                last_error=None,
                created_at=now,
                updated_at=now,
            )
            self._session.add(job)
            try:
                self._session.flush()
                return job, True
            except IntegrityError as exc:
                duplicate_error = exc

        existing = self.get_by_key(message.options.job_id)
        if existing is None:
            if duplicate_error is not None:
                raise duplicate_error
            msg = "Failed to load job after idempotent enqueue attempt."
            raise RuntimeError(msg)
        return existing, False

    def claim(
        self,
        *,
        limit: int,
        lease_seconds: float,
        stage_names: Collection[StageName] | None = None,
        exclude_stage_names: Collection[StageName] | None = None,
    ) -> list[BillingJob]:
        """Lease up to ``limit`` due jobs, including jobs with expired leases."""

        if limit <= 0:
            return []
        now = datetime.now(tz=UTC)
        statement = select(BillingJob).where(
            or_(
                and_(
                    BillingJob.status == BillingJobStatus.PENDING,
                    BillingJob.run_after <= now,
                ),
                and_(
                    BillingJob.status == BillingJobStatus.ACTIVE,
                    BillingJob.locked_until < now,
                ),
            )
        )
        if stage_names is not None:
            statement = statement.where(
                BillingJob.stage_name.in_([name.value for name in stage_names])
            )
        if exclude_stage_names:
            statement = statement.where(
                BillingJob.stage_name.not_in(
                    [name.value for name in exclude_stage_names]
                )
            )
        statement = (
            statement.order_by(BillingJob.run_after, BillingJob.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )

        jobs = list(self._session.scalars(statement))
        for job in jobs:
            job.status = BillingJobStatus.ACTIVE
            job.attempts += 1
            job.locked_until = now + timedelta(seconds=lease_seconds)
            job.updated_at = now
        self._session.flush()
        return jobs

    def claim_throttled(
        self,
        stage_name: StageName,
        *,
        limit: int,
        max_active: int,
        lease_seconds: float,
    ) -> list[BillingJob]:
        """Lease jobs of one stage without exceeding ``max_active`` live leases.

        The stage lock row is held until commit, so workers claiming the same
        stage count and lease one at a time.
        """

        if limit <= 0:
            return []
        self._lock_stage(stage_name)
        free_slots = max(max_active - self.count_active(stage_name), 0)
        return self.claim(
            limit=min(limit, free_slots),
            lease_seconds=lease_seconds,
            stage_names=(stage_name,),
        )

    def _lock_stage(self, stage_name: StageName) -> None:
        statement = (
            select(BillingStageLock)
            .where(BillingStageLock.stage_name == stage_name.value)
            .with_for_update()
        )
        if self._session.scalar(statement) is not None:
            return
        try:
            with self._session.begin_nested():
                self._session.add(BillingStageLock(stage_name=stage_name.value))
        except IntegrityError:
            logger.debug(
                "stage_lock_created_concurrently",
                extra={"stage_name": str(stage_name)},
            )
        self._session.scalar(statement)

    def count_active(self, stage_name: StageName) -> int:
        """Jobs of one stage currently holding a live lease."""

        now = datetime.now(tz=UTC)
        statement = select(func.count()).where(
            BillingJob.stage_name == stage_name.value,
            BillingJob.status == BillingJobStatus.ACTIVE,
            BillingJob.locked_until >= now,
        )
        return int(self._session.scalar(statement) or 0)

    def count_backlog(self) -> dict[BillingJobStatus, int]:
        statement = (
            select(BillingJob.status, func.count())
            .where(
                BillingJob.status.in_(
                    (BillingJobStatus.PENDING, BillingJobStatus.ACTIVE)
                )
            )
            .group_by(BillingJob.status)
        )
        counts = {BillingJobStatus.PENDING: 0, BillingJobStatus.ACTIVE: 0}
        for status, count in self._session.execute(statement):
            counts[BillingJobStatus(status)] = int(count)
        return counts

    def complete(self, job: BillingJob) -> None:
        job.status = BillingJobStatus.COMPLETED
        job.locked_until = None
        job.last_error = None
        job.updated_at = datetime.now(tz=UTC)
        self._session.flush()

    def fail(self, job: BillingJob, *, error: str) -> bool:
        """Record a failed attempt; returns True when retries are exhausted."""

        now = datetime.now(tz=UTC)
        job.last_error = error
        job.locked_until = None
        job.updated_at = now
        exhausted = job.attempts >= job.retry_limit
        if exhausted:
            job.status = BillingJobStatus.FAILED
        else:
            job.status = BillingJobStatus.PENDING
            job.run_after = now + timedelta(
                seconds=backoff_delay_seconds(
                    attempts=job.attempts,
                    base_delay_seconds=job.backoff_seconds,
                )
            )
        self._session.flush()
        return exhausted

    def abandon(self, job: BillingJob, *, error: str) -> None:
        """Fail a job immediately, whatever retries it has left."""

        job.status = BillingJobStatus.FAILED
        job.last_error = error
        job.locked_until = None
        job.updated_at = datetime.now(tz=UTC)
        self._session.flush()

    def defer(self, job: BillingJob, *, delay_seconds: float) -> None:
        """Re-poll later without spending one of the job's retries."""

        now = datetime.now(tz=UTC)
        job.status = BillingJobStatus.PENDING
        job.attempts = max(job.attempts - 1, 0)
        job.poll_count += 1
        job.locked_until = None
        job.run_after = now + timedelta(seconds=delay_seconds)
        job.updated_at = now
        self._session.flush()

    def reopen(self, job: BillingJob) -> None:
        """Make a finished job due again with a fresh retry and poll budget."""

        now = datetime.now(tz=UTC)
        job.status = BillingJobStatus.PENDING
        job.attempts = 0
        job.poll_count = 0
        job.locked_until = None
        job.last_error = None
        job.run_after = now
        job.updated_at = now
        self._session.flush()

    def list_stalled_batch_ids(self) -> list[UUID]:
        """Processing batches with no pending or leased job left to move them on."""

        live_jobs = select(BillingJob.batch_id).where(
            BillingJob.status.in_((BillingJobStatus.PENDING, BillingJobStatus.ACTIVE))
        )
        statement = (
            select(Batch.id)
            .where(
                Batch.status == BatchStatus.PROCESSING,
                Batch.id.not_in(live_jobs),
            )
            .order_by(Batch.created_at)
        )
        return list(self._session.scalars(statement))

    def list_for_batch(self, batch_id: UUID) -> list[BillingJob]:
        statement = (
            select(BillingJob)
            .where(BillingJob.batch_id == batch_id)
            .order_by(BillingJob.created_at)
        )
        return list(self._session.scalars(statement))

    def delete_for_batch(self, batch_id: UUID) -> None:
        self._session.execute(
            delete(BillingJob)
            .where(BillingJob.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
