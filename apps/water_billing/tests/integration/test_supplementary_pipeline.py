"""Supplementary batches only bill what changed since the last sent batch."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import Settings
from water_billing.db.models.batch import BatchStatus, BatchType
from water_billing.db.models.charge_version import ChargeElement
from water_billing.db.models.transaction import TransactionStatus
from water_billing.jobs.worker import Worker
from water_billing.repositories.transaction_repository import TransactionRepository
from water_billing.services.batch_service import CreateBatchInput, build_batch_service

from factories import SeededLicence, seed_licence
from fakes import FakeChargeModule, drain


def run_batch(
    session_factory: sessionmaker[Session],
    worker: Worker,
    charge_module: FakeChargeModule,
    settings: Settings,
    batch_type: BatchType,
) -> UUID:
    with session_factory() as session:
        service = build_batch_service(session, charge_module=charge_module, settings=settings)
        batch_id = service.create_batch(
            CreateBatchInput(
                region_code="A",
                batch_type=batch_type,
                financial_year_ending=2020,
            )
        ).id

    drain(worker)
    return batch_id


def send_annual_batch(
    session_factory: sessionmaker[Session],
    worker: Worker,
    charge_module: FakeChargeModule,
    settings: Settings,
) -> UUID:
    batch_id = run_batch(session_factory, worker, charge_module, settings, BatchType.ANNUAL)
    with session_factory() as session:
        service = build_batch_service(session, charge_module=charge_module, settings=settings)
        batch = service.approve_batch(batch_id)
    assert batch.status == BatchStatus.SENT
    return batch_id


def seed_flagged_licence(session_factory: sessionmaker[Session]) -> SeededLicence:
    with session_factory() as session:
        return seed_licence(session, include_in_supplementary_billing=True)


def test_unchanged_charges_leave_supplementary_batch_empty(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    seed_flagged_licence(sqlite_session_factory)
    send_annual_batch(sqlite_session_factory, worker, charge_module, settings)
    sent_count = len(charge_module.added_transactions)

    batch_id = run_batch(
        sqlite_session_factory,
        worker,
        charge_module,
        settings,
        BatchType.SUPPLEMENTARY,
    )

    with sqlite_session_factory() as session:
        service = build_batch_service(session, charge_module=charge_module, settings=settings)
        batch = service.get_batch(batch_id)
        transactions = TransactionRepository(session).list_for_batch(batch_id)

        assert batch.status == BatchStatus.EMPTY
        assert batch.start_financial_year_ending == 2014
        assert transactions == []
    assert len(charge_module.added_transactions) == sent_count
    assert charge_module.created_bill_runs == ["bill-run-1"]


def test_changed_quantity_is_credited_and_rebilled(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    charge_module: FakeChargeModule,
    worker: Worker,
) -> None:
    seeded = seed_flagged_licence(sqlite_session_factory)
    annual_batch_id = send_annual_batch(
        sqlite_session_factory, worker, charge_module, settings
    )
    with sqlite_session_factory() as session:
        element = session.get(ChargeElement, seeded.charge_element_id)
        assert element is not None
        element.authorised_annual_quantity = Decimal("150")
        session.commit()

    batch_id = run_batch(
        sqlite_session_factory,
        worker,
        charge_module,
        settings,
        BatchType.SUPPLEMENTARY,
    )

    with sqlite_session_factory() as session:
        service = build_batch_service(session, charge_module=charge_module, settings=settings)
        batch = service.get_batch(batch_id)
        [original] = TransactionRepository(session).list_for_batch(annual_batch_id)
        transactions = TransactionRepository(session).list_for_batch(batch_id)
        credits = [transaction for transaction in transactions if transaction.is_credit]
        debits = [transaction for transaction in transactions if not transaction.is_credit]

        assert batch.status == BatchStatus.READY
        assert batch.external_id == "bill-run-2"
        assert batch.net_total == Decimal("0")
        assert [credit.source_transaction_id for credit in credits] == [original.id]
        assert credits[0].volume == Decimal("200")
        assert [debit.volume for debit in debits] == [Decimal("150")]
        assert {transaction.status for transaction in transactions} == {
            TransactionStatus.CHARGE_CREATED
        }

    supplementary_payloads = [
        payload for _, payload in charge_module.bill_runs["bill-run-2"]
    ]
    assert sorted(payload["credit"] for payload in supplementary_payloads) == [False, True]
