"""Failure paths of the batch pipeline, run through the worker."""

from __future__ import annotations

from datetime import date
from uuid import UUID

import pytest
from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import Settings
from water_billing.db.models.batch import BatchErrorCode, BatchStatus, BatchType
from water_billing.db.models.billing_job import BillingJobStatus
from water_billing.db.models.charge_version_year import ChargeVersionYearStatus
from water_billing.db.models.transaction import TransactionStatus
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.queue import JobQueue
from water_billing.jobs.stages.base import Repositories
from water_billing.jobs.stages.process import ProcessStage
from water_billing.jobs.worker import Worker
from water_billing.repositories.charge_version_year_repository import (
    ChargeVersionYearRepository,
)
from water_billing.repositories.transaction_repository import TransactionRepository
from water_billing.services.batch_service import CreateBatchInput, build_batch_service
from water_billing.services.charge_version_year_populator import (
    ChargeVersionYearPopulator,
)

from factories import SeededLicence, seed_licence
from fakes import FakeChargeModule, FakeReferenceData, drain


def start_annual_batch(
    session_factory: sessionmaker[Session],
    charge_module: FakeChargeModule,
    settings: Settings,
) -> UUID:
    with session_factory() as session:
        service = build_batch_service(session, charge_module=charge_module, settings=settings)
        batch = service.create_batch(
            CreateBatchInput(
                region_code="A",
                batch_type=BatchType.ANNUAL,
                financial_year_ending=2020,
            )
        )
        return batch.id


def stage_jobs(
    session: Session,
    batch_id: UUID,
    stage_name: StageName,
) -> list[BillingJobStatus]:
    return [
        job.status
        for job in JobQueue(session).list_for_batch(batch_id)
        if job.stage_name == stage_name
    ]


def test_rejected_charge_fails_only_that_transaction(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        seed_licence(session, is_water_undertaker=False)
    charge_module.reject_compensation_charges = True
    batch_id = start_annual_batch(sqlite_session_factory, charge_module, settings)

    drain(worker)

    with sqlite_session_factory() as session:
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).get_batch(batch_id)
        transactions = {
            transaction.is_compensation_charge: transaction
            for transaction in TransactionRepository(session).list_for_batch(batch_id)
        }

        assert batch.status == BatchStatus.READY
        assert transactions[False].status == TransactionStatus.CHARGE_CREATED
        assert transactions[True].status == TransactionStatus.ERROR
        assert transactions[True].external_id is None
        assert transactions[True].error_message is not None
        assert stage_jobs(session, batch_id, StageName.CREATE_CHARGE) == [
            BillingJobStatus.COMPLETED,
            BillingJobStatus.COMPLETED,
        ]
    assert len(charge_module.added_transactions) == 1


def test_ledger_outage_exhausts_retries_and_fails_the_batch(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    charge_module.unavailable = True
    batch_id = start_annual_batch(sqlite_session_factory, charge_module, settings)

    drain(worker)

    with sqlite_session_factory() as session:
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).get_batch(batch_id)
        [transaction] = TransactionRepository(session).list_for_batch(batch_id)
        [charge_job] = [
            job
            for job in JobQueue(session).list_for_batch(batch_id)
            if job.stage_name == StageName.CREATE_CHARGE
        ]

        assert batch.status == BatchStatus.ERROR
        assert batch.error_code == BatchErrorCode.FAILED_TO_CREATE_CHARGE
        assert transaction.status == TransactionStatus.ERROR
        assert charge_job.status == BillingJobStatus.FAILED
        assert charge_job.attempts == settings.job_retry_limit
        assert stage_jobs(session, batch_id, StageName.REFRESH_TOTALS) == []


def test_unbillable_charge_version_year_fails_the_batch(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    reference_data: FakeReferenceData,
    worker: Worker,
) -> None:
    reference_data.account_start = date(2019, 7, 1)
    batch_id = start_annual_batch(sqlite_session_factory, charge_module, settings)

    drain(worker)

    with sqlite_session_factory() as session:
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).get_batch(batch_id)
        [unit] = ChargeVersionYearRepository(session).list_for_batch(batch_id)

        assert batch.status == BatchStatus.ERROR
        assert batch.error_code == BatchErrorCode.FAILED_TO_PROCESS_CHARGE_VERSIONS
        assert unit.status == ChargeVersionYearStatus.ERROR
        assert TransactionRepository(session).list_for_batch(batch_id) == []
        assert stage_jobs(session, batch_id, StageName.PREPARE) == []
    assert charge_module.created_bill_runs == []


def test_populate_failure_fails_the_batch_after_retries(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fail_populate(self: ChargeVersionYearPopulator, batch: object) -> list[object]:
        msg = "charge versions unavailable"
        raise RuntimeError(msg)

    monkeypatch.setattr(ChargeVersionYearPopulator, "populate", fail_populate)
    batch_id = start_annual_batch(sqlite_session_factory, charge_module, settings)

    drain(worker)

    with sqlite_session_factory() as session:
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).get_batch(batch_id)
        [populate_job] = JobQueue(session).list_for_batch(batch_id)

        assert batch.status == BatchStatus.ERROR
        assert batch.error_code == BatchErrorCode.FAILED_TO_POPULATE_CHARGE_VERSIONS
        assert populate_job.status == BillingJobStatus.FAILED
        assert populate_job.attempts == settings.job_retry_limit
        assert populate_job.last_error == "charge versions unavailable"


def test_batch_recovers_when_a_completion_hook_crashes(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    on_complete = ProcessStage.on_complete
    calls: list[UUID | None] = []

    def crash_first_call(
        self: ProcessStage,
        repositories: Repositories,
        message: JobMessage,
    ) -> None:
        calls.append(message.payload.unit_id)
        if len(calls) == 1:
            msg = "worker killed"
            raise RuntimeError(msg)
        on_complete(self, repositories, message)

    monkeypatch.setattr(ProcessStage, "on_complete", crash_first_call)
    batch_id = start_annual_batch(sqlite_session_factory, charge_module, settings)

    drain(worker)

    with sqlite_session_factory() as session:
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).get_batch(batch_id)
        jobs = JobQueue(session).list_for_batch(batch_id)

        assert batch.status == BatchStatus.READY
        assert {job.stage_name for job in jobs} == {stage.value for stage in StageName}
        assert {job.status for job in jobs} == {BillingJobStatus.COMPLETED}
    assert len(calls) == 2
