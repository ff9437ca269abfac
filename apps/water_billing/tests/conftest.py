from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from water_billing.api.app import create_app
from water_billing.core.settings import Settings
from water_billing.db.base import Base, import_orm_models
from water_billing.db.session import get_db_session

from factories import SeededLicence, seed_licence


@pytest.fixture
def sqlite_session_factory() -> Generator[sessionmaker[Session], None, None]:
    import_orm_models()
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    try:
        yield factory
    finally:
        Base.metadata.drop_all(engine)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        WORKER_CONCURRENCY=1,
        CREATE_CHARGE_CONCURRENCY=1,
        JOB_RETRY_LIMIT=2,
        JOB_BACKOFF_SECONDS=0,
        REFRESH_POLL_SECONDS=0,
        REFRESH_MAX_POLLS=3,
        SUPPLEMENTARY_YEARS=6,
    )


@pytest.fixture
def seeded_licence(sqlite_session_factory: sessionmaker[Session]) -> SeededLicence:
    with sqlite_session_factory() as session:
        return seed_licence(session)


@pytest.fixture
def client(
    sqlite_session_factory: sessionmaker[Session],
) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_get_db_session() -> Generator[Session, None, None]:
        with sqlite_session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    with TestClient(app) as test_client:
        yield test_client
