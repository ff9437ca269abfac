from __future__ import annotations

import threading
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import Settings
from water_billing.jobs.messages import StageName, create_message
from water_billing.jobs.orchestrator import JobOutcome
from water_billing.jobs.queue import JobQueue
from water_billing.jobs.worker import Worker


@dataclass
class FakeOrchestrator:
    executed: list[UUID] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def execute(self, job_id: UUID) -> JobOutcome:
        with self.lock:
            self.executed.append(job_id)
        return JobOutcome.COMPLETED

    def resume_stalled_batches(self) -> list[UUID]:
        return []


def enqueue_jobs(
    session_factory: sessionmaker[Session],
    *,
    create_charge_jobs: int,
    process_jobs: int,
) -> None:
    batch_id = uuid4()
    with session_factory() as session:
        queue = JobQueue(session)
        for _ in range(create_charge_jobs):
            queue.enqueue(
                create_message(
                    StageName.CREATE_CHARGE,
                    batch_id=batch_id,
                    transaction_id=uuid4(),
                    retry_limit=3,
                    backoff_seconds=0,
                )
            )
        for _ in range(process_jobs):
            queue.enqueue(
                create_message(
                    StageName.PROCESS,
                    batch_id=batch_id,
                    unit_id=uuid4(),
                    retry_limit=3,
                    backoff_seconds=0,
                )
            )
        session.commit()


def test_create_charge_jobs_are_throttled(
    sqlite_session_factory: sessionmaker[Session],
) -> None:
    enqueue_jobs(sqlite_session_factory, create_charge_jobs=3, process_jobs=1)
    worker = Worker(
        session_factory=sqlite_session_factory,
        orchestrator=FakeOrchestrator(),  # type: ignore[arg-type]
        settings=Settings(WORKER_CONCURRENCY=4, CREATE_CHARGE_CONCURRENCY=1),
    )

    claimed = worker.claim()

    assert len(claimed) == 2
    with sqlite_session_factory() as session:
        queue = JobQueue(session)
        assert queue.count_active(StageName.CREATE_CHARGE) == 1
        assert queue.count_active(StageName.PROCESS) == 1


def test_live_create_charge_leases_use_up_the_shared_limit(
    sqlite_session_factory: sessionmaker[Session],
) -> None:
    enqueue_jobs(sqlite_session_factory, create_charge_jobs=2, process_jobs=0)
    settings = Settings(WORKER_CONCURRENCY=4, CREATE_CHARGE_CONCURRENCY=1)
    first = Worker(
        session_factory=sqlite_session_factory,
        orchestrator=FakeOrchestrator(),  # type: ignore[arg-type]
        settings=settings,
    )
    second = Worker(
        session_factory=sqlite_session_factory,
        orchestrator=FakeOrchestrator(),  # type: ignore[arg-type]
        settings=settings,
    )

    assert len(first.claim()) == 1
    assert second.claim() == []


def test_run_once_executes_every_claimed_job(
    sqlite_session_factory: sessionmaker[Session],
) -> None:
    enqueue_jobs(sqlite_session_factory, create_charge_jobs=1, process_jobs=2)
    orchestrator = FakeOrchestrator()
    worker = Worker(
        session_factory=sqlite_session_factory,
        orchestrator=orchestrator,  # type: ignore[arg-type]
        settings=Settings(WORKER_CONCURRENCY=4, CREATE_CHARGE_CONCURRENCY=2),
    )

    outcomes = worker.run_once()

    assert len(outcomes) == 3
    assert set(outcomes.values()) == {JobOutcome.COMPLETED}
    assert sorted(orchestrator.executed) == sorted(outcomes)
    assert worker.run_once() == {}
