"""Run one queued job through its stage handler and lifecycle hooks."""

from __future__ import annotations

import enum
import logging
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from water_billing.db.models.billing_job import BillingJobStatus
from water_billing.db.session import session_scope
from water_billing.domain.errors import ReconciliationDeferred
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.stages.base import PipelineDependencies, Repositories, Stage
from water_billing.jobs.stages.create_charge import CreateChargeStage
from water_billing.jobs.stages.populate import PopulateStage
from water_billing.jobs.stages.prepare import PrepareStage
from water_billing.jobs.stages.process import ProcessStage
from water_billing.jobs.stages.refresh_totals import RefreshTotalsStage

logger = logging.getLogger(__name__)


class JobOutcome(enum.StrEnum):
    COMPLETED = "completed"
    DEFERRED = "deferred"
    RETRYING = "retrying"
    FAILED = "failed"
    MISSING = "missing"


def build_stages(dependencies: PipelineDependencies) -> dict[StageName, Stage]:
    stages: list[Stage] = [
        PopulateStage(dependencies),
        ProcessStage(dependencies),
        PrepareStage(dependencies),
        CreateChargeStage(dependencies),
        RefreshTotalsStage(dependencies),
    ]
    return {stage.name: stage for stage in stages}


class BatchOrchestrator:
    """Executes claimed jobs with at-least-once semantics.

    The stage handler and the job completion share one transaction. Hooks run
    in a fresh transaction after that commit, so they observe the handler's
    writes together with those of concurrent jobs.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        dependencies: PipelineDependencies,
    ) -> None:
        self._session_factory = session_factory
        self._dependencies = dependencies
        self._stages = build_stages(dependencies)

    def execute(self, job_id: UUID) -> JobOutcome:
        message = self._load_message(job_id)
        if message is None:
            return JobOutcome.MISSING
        stage = self._stages[message.stage_name]
        log_extra = {
            "job_id": str(job_id),
            "stage_name": str(message.stage_name),
            "batch_id": str(message.payload.batch_id),
        }

        try:
            with session_scope(self._session_factory) as session:
                repositories = Repositories.from_session(session)
                job = repositories.jobs.get(job_id)
                if job is None:
                    return JobOutcome.MISSING
                try:
                    stage.handle(repositories, message)
                except ReconciliationDeferred:
                    if job.poll_count + 1 >= self._dependencies.settings.refresh_max_polls:
                        raise
                    repositories.jobs.defer(
                        job,
                        delay_seconds=self._dependencies.settings.refresh_poll_seconds,
                    )
                    logger.info("billing_job_deferred", extra=log_extra)
                    return JobOutcome.DEFERRED
                repositories.jobs.complete(job)
        except ReconciliationDeferred as exc:
            logger.error("billing_job_poll_limit_reached", extra=log_extra)
            self._abandon(job_id, stage, message, exc)
            return JobOutcome.FAILED
        except Exception as exc:
            logger.exception("billing_job_failed", extra=log_extra)
            return self._record_failure(job_id, stage, message, exc)

        logger.info("billing_job_completed", extra=log_extra)
        with session_scope(self._session_factory) as session:
            stage.on_complete(Repositories.from_session(session), message)
        return JobOutcome.COMPLETED

    def resume_stalled_batches(self) -> list[UUID]:
        """Re-run the last hook of processing batches that have no live job.

        A hook commits separately from its job, so a crash between the two
        leaves the batch processing with nothing queued to move it on. Hooks
        are idempotent, which makes replaying them safe.
        """

        with session_scope(self._session_factory) as session:
            batch_ids = Repositories.from_session(session).jobs.list_stalled_batch_ids()

        resumed: list[UUID] = []
        for batch_id in batch_ids:
            try:
                with session_scope(self._session_factory) as session:
                    if self._resume(Repositories.from_session(session), batch_id):
                        resumed.append(batch_id)
            except Exception:
                logger.exception(
                    "batch_resume_failed",
                    extra={"batch_id": str(batch_id)},
                )
        return resumed

    def _resume(self, repositories: Repositories, batch_id: UUID) -> bool:
        jobs = repositories.jobs.list_for_batch(batch_id)
        failed = [job for job in jobs if job.status == BillingJobStatus.FAILED]
        if failed:
            job = failed[-1]
            message = JobMessage.model_validate(job.message)
            self._stages[message.stage_name].on_failed(
                repositories,
                message,
                RuntimeError(job.last_error or "Job failed."),
            )
        else:
            completed = [
                JobMessage.model_validate(job.message)
                for job in jobs
                if job.status == BillingJobStatus.COMPLETED
            ]
            if not completed:
                return False
            stage_order = list(StageName)
            message = max(
                completed,
                key=lambda item: stage_order.index(item.stage_name),
            )
            self._stages[message.stage_name].on_complete(repositories, message)
        logger.warning(
            "stalled_batch_resumed",
            extra={"batch_id": str(batch_id), "stage_name": str(message.stage_name)},
        )
        return True

    def _load_message(self, job_id: UUID) -> JobMessage | None:
        with session_scope(self._session_factory) as session:
            job = Repositories.from_session(session).jobs.get(job_id)
            if job is None:
                logger.warning("billing_job_missing", extra={"job_id": str(job_id)})
                return None
            return JobMessage.model_validate(job.message)

    def _record_failure(
        self,
        job_id: UUID,
        stage: Stage,
        message: JobMessage,
        error: Exception,
    ) -> JobOutcome:
        with session_scope(self._session_factory) as session:
            repositories = Repositories.from_session(session)
            job = repositories.jobs.get(job_id)
            if job is None:
                return JobOutcome.MISSING
            exhausted = repositories.jobs.fail(job, error=str(error))
            if not exhausted:
                return JobOutcome.RETRYING
            stage.on_failed(repositories, message, error)
        return JobOutcome.FAILED

    def _abandon(
        self,
        job_id: UUID,
        stage: Stage,
        message: JobMessage,
        error: Exception,
    ) -> None:
        with session_scope(self._session_factory) as session:
            repositories = Repositories.from_session(session)
            job = repositories.jobs.get(job_id)
            if job is not None:
                repositories.jobs.abandon(job, error=str(error))
            stage.on_failed(repositories, message, error)
