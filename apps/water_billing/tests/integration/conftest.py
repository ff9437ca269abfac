from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import Settings
from water_billing.jobs.orchestrator import BatchOrchestrator
from water_billing.jobs.stages.base import PipelineDependencies
from water_billing.jobs.worker import Worker

from fakes import FakeChargeModule, FakeReferenceData


@pytest.fixture
def charge_module() -> FakeChargeModule:
    return FakeChargeModule()


@pytest.fixture
def reference_data() -> FakeReferenceData:
    return FakeReferenceData()


@pytest.fixture
def worker(
    sqlite_session_factory: sessionmaker[Session],
    settings: Settings,
    charge_module: FakeChargeModule,
    reference_data: FakeReferenceData,
) -> Worker:
    orchestrator = BatchOrchestrator(
        session_factory=sqlite_session_factory,
        dependencies=PipelineDependencies(
            settings=settings,
            charge_module=charge_module,
            reference_data=reference_data,
        ),
    )
    return Worker(
        session_factory=sqlite_session_factory,
        orchestrator=orchestrator,
        settings=settings,
    )
