from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker
from typer.testing import CliRunner

from water_billing import cli
from water_billing.db.models.batch import BatchStatus
from water_billing.jobs.queue import JobQueue
from water_billing.repositories.batch_repository import BatchRepository

from factories import SeededLicence


def test_healthcheck() -> None:
    result = CliRunner().invoke(cli.app, ["healthcheck"])

    assert result.exit_code == 0
    assert "water-billing is ready" in result.stdout


def test_create_batch_command_queues_batch(
    monkeypatch: pytest.MonkeyPatch,
    sqlite_session_factory: sessionmaker[Session],
    seeded_licence: SeededLicence,
) -> None:
    monkeypatch.setattr(cli, "get_session_factory", lambda: sqlite_session_factory)

    result = CliRunner().invoke(
        cli.app,
        ["create-batch", "--region", "A", "--type", "annual", "--year", "2020"],
    )

    assert result.exit_code == 0, result.stdout
    assert "created (processing)" in result.stdout
    with sqlite_session_factory() as session:
        batch = BatchRepository(session).find_live_in_region(seeded_licence.region_id)
        assert batch is not None
        assert batch.status == BatchStatus.PROCESSING
        assert len(JobQueue(session).list_for_batch(batch.id)) == 1


def test_create_batch_command_rejects_unknown_type() -> None:
    result = CliRunner().invoke(
        cli.app,
        ["create-batch", "--region", "A", "--type", "monthly", "--year", "2020"],
    )

    assert result.exit_code != 0
