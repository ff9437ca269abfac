"""Polling worker that claims due jobs and runs them concurrently."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import Settings
from water_billing.db.session import session_scope
from water_billing.jobs.messages import StageName
from water_billing.jobs.orchestrator import BatchOrchestrator, JobOutcome
from water_billing.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

THROTTLED_STAGES = (StageName.CREATE_CHARGE,)


class Worker:
    """Claims up to ``worker_concurrency`` jobs per poll.

    Create-charge jobs are additionally capped by
    ``create_charge_concurrency`` across every worker sharing the queue.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        orchestrator: BatchOrchestrator,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._orchestrator = orchestrator
        self._settings = settings
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def claim(self) -> list[UUID]:
        settings = self._settings
        with session_scope(self._session_factory) as session:
            queue = JobQueue(session)
            free_slots = settings.worker_concurrency
            jobs = queue.claim_throttled(
                StageName.CREATE_CHARGE,
                limit=free_slots,
                max_active=settings.create_charge_concurrency,
                lease_seconds=settings.job_lock_timeout_seconds,
            )
            jobs += queue.claim(
                limit=free_slots - len(jobs),
                lease_seconds=settings.job_lock_timeout_seconds,
                exclude_stage_names=THROTTLED_STAGES,
            )
            return [job.id for job in jobs]

    def run_once(self) -> dict[UUID, JobOutcome]:
        """Resume stalled batches, then claim one round of jobs and run them."""

        self._orchestrator.resume_stalled_batches()
        job_ids = self.claim()
        if not job_ids:
            return {}
        if self._settings.worker_concurrency == 1 or len(job_ids) == 1:
            return {job_id: self._run(job_id) for job_id in job_ids}
        with ThreadPoolExecutor(max_workers=len(job_ids)) as executor:
            outcomes = executor.map(self._run, job_ids)
            return dict(zip(job_ids, outcomes, strict=True))

    def run_forever(self, *, poll_interval_seconds: float = 1.0) -> None:
        logger.info(
            "worker_started",
            extra={
                "worker_concurrency": self._settings.worker_concurrency,
                "create_charge_concurrency": self._settings.create_charge_concurrency,
            },
        )
        while not self._stop.is_set():
            if not self.run_once():
                self._stop.wait(poll_interval_seconds)
        logger.info("worker_stopped")

    def _run(self, job_id: UUID) -> JobOutcome:
        try:
            return self._orchestrator.execute(job_id)
        except Exception:
            logger.exception("billing_job_crashed", extra={"job_id": str(job_id)})
            return JobOutcome.FAILED
