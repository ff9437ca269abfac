from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import Settings
from water_billing.db.models.batch import (
    BatchErrorCode,
    BatchSeason,
    BatchStatus,
    BatchType,
)
from water_billing.db.models.billing_job import BillingJobStatus
from water_billing.domain.errors import (
    BatchConflictError,
    InvalidStatusTransitionError,
    LedgerServerError,
    NotFoundError,
    ValidationError,
)
from water_billing.jobs.messages import StageName
from water_billing.jobs.queue import JobQueue
from water_billing.jobs.worker import Worker
from water_billing.repositories.invoice_repository import InvoiceRepository
from water_billing.repositories.transaction_repository import TransactionRepository
from water_billing.services.batch_service import (
    BatchService,
    CreateBatchInput,
    build_batch_service,
)

from factories import SeededLicence
from fakes import FakeChargeModule, drain

ANNUAL_2020 = CreateBatchInput(
    region_code="A",
    batch_type=BatchType.ANNUAL,
    financial_year_ending=2020,
)


def build_service(
    session: Session,
    charge_module: FakeChargeModule,
    settings: Settings,
) -> BatchService:
    return build_batch_service(session, charge_module=charge_module, settings=settings)


def test_create_batch_queues_populate(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
) -> None:
    with sqlite_session_factory() as session:
        batch = build_service(session, charge_module, settings).create_batch(ANNUAL_2020)
        [job] = JobQueue(session).list_for_batch(batch.id)

    assert batch.status == BatchStatus.PROCESSING
    assert batch.region_id == seeded_licence.region_id
    assert batch.start_financial_year_ending == 2020
    assert batch.end_financial_year_ending == 2020
    assert job.stage_name == StageName.POPULATE
    assert job.status == BillingJobStatus.PENDING
    assert job.retry_limit == settings.job_retry_limit


def test_second_live_batch_in_region_conflicts(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
) -> None:
    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)
        first = service.create_batch(ANNUAL_2020)

        with pytest.raises(BatchConflictError) as exc_info:
            service.create_batch(
                CreateBatchInput(
                    region_code="A",
                    batch_type=BatchType.SUPPLEMENTARY,
                    financial_year_ending=2020,
                )
            )

    assert exc_info.value.details["batch_id"] == str(first.id)
    assert exc_info.value.status_code == 409


def test_unknown_region_is_not_found(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    charge_module: FakeChargeModule,
) -> None:
    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)

        with pytest.raises(NotFoundError):
            service.create_batch(
                CreateBatchInput(
                    region_code="Z",
                    batch_type=BatchType.ANNUAL,
                    financial_year_ending=2020,
                )
            )


@pytest.mark.parametrize(
    ("batch_type", "season"),
    [
        (BatchType.TWO_PART_TARIFF, BatchSeason.ALL_YEAR),
        (BatchType.ANNUAL, BatchSeason.SUMMER),
        (BatchType.SUPPLEMENTARY, BatchSeason.WINTER_ALL_YEAR),
    ],
)
def test_season_must_match_batch_type(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    batch_type: BatchType,
    season: BatchSeason,
) -> None:
    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)

        with pytest.raises(ValidationError):
            service.create_batch(
                CreateBatchInput(
                    region_code="A",
                    batch_type=batch_type,
                    financial_year_ending=2020,
                    season=season,
                )
            )


def test_only_ready_batches_can_be_approved(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
) -> None:
    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)
        batch = service.create_batch(ANNUAL_2020)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            service.approve_batch(batch.id)

    assert exc_info.value.details == {"current": "processing", "target": "sent"}
    assert charge_module.approved == []


def test_approve_sends_ready_batch(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id
    drain(worker)

    with sqlite_session_factory() as session:
        batch = build_service(session, charge_module, settings).approve_batch(batch_id)

    assert batch.status == BatchStatus.SENT
    assert charge_module.approved == ["bill-run-1"]
    assert charge_module.sent == ["bill-run-1"]


def test_delete_batch_removes_local_rows(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id
    drain(worker)

    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)
        service.delete_batch(batch_id)

        with pytest.raises(NotFoundError):
            service.get_batch(batch_id)
        assert TransactionRepository(session).list_for_batch(batch_id) == []
        assert JobQueue(session).list_for_batch(batch_id) == []
    assert charge_module.deleted == ["bill-run-1"]


def test_failed_ledger_delete_moves_batch_to_error(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id
    drain(worker)
    charge_module.fail_deletes = True

    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)
        with pytest.raises(LedgerServerError):
            service.delete_batch(batch_id)

    with sqlite_session_factory() as session:
        batch = build_service(session, charge_module, settings).get_batch(batch_id)

        assert batch.status == BatchStatus.ERROR
        assert batch.error_code == BatchErrorCode.FAILED_TO_DELETE_BATCH


def test_delete_batch_treats_missing_bill_run_as_deleted(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id
    drain(worker)
    charge_module.bill_run_missing = True

    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)
        service.delete_batch(batch_id)

        with pytest.raises(NotFoundError):
            service.get_batch(batch_id)
        assert TransactionRepository(session).list_for_batch(batch_id) == []


def test_delete_processing_batch_stops_its_pipeline(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id

    with sqlite_session_factory() as session:
        build_service(session, charge_module, settings).delete_batch(batch_id)
    rounds = drain(worker)

    with sqlite_session_factory() as session:
        assert JobQueue(session).list_for_batch(batch_id) == []
    assert rounds == 0
    assert charge_module.created_bill_runs == []
    assert charge_module.deleted == []


def test_refresh_requeues_completed_reconciliation(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id
    drain(worker)
    requests_before = charge_module.summary_requests

    with sqlite_session_factory() as session:
        build_service(session, charge_module, settings).refresh_batch(batch_id)
    drain(worker)

    assert charge_module.summary_requests == requests_before + 1
    assert charge_module.generated == ["bill-run-1"]


def test_missing_batch_is_not_found(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    charge_module: FakeChargeModule,
) -> None:
    with sqlite_session_factory() as session:
        service = build_service(session, charge_module, settings)

        with pytest.raises(NotFoundError):
            service.get_batch(uuid4())


def test_delete_invoice_removes_it_from_ledger_and_batch(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    seeded_licence: SeededLicence,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    with sqlite_session_factory() as session:
        batch_id = build_service(session, charge_module, settings).create_batch(ANNUAL_2020).id
    drain(worker)

    with sqlite_session_factory() as session:
        [invoice] = InvoiceRepository(session).list_for_batch(batch_id)
        invoice_id, invoice_external_id = invoice.id, invoice.external_id
        service = build_service(session, charge_module, settings)
        service.delete_invoice(batch_id, invoice_id)

        assert InvoiceRepository(session).list_for_batch(batch_id) == []
        assert TransactionRepository(session).list_for_batch(batch_id) == []
    assert charge_module.deleted == [f"bill-run-1/{invoice_external_id}"]
