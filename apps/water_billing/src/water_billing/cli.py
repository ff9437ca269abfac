"""CLI bootstrap for water-billing."""

import logging
from uuid import UUID

import typer

from water_billing.core.settings import get_settings
from water_billing.db.models.batch import BatchSeason, BatchType
from water_billing.db.session import get_session_factory
from water_billing.infrastructure.charge_module.client import ChargeModuleClient
from water_billing.infrastructure.crm.client import CrmClient
from water_billing.jobs.orchestrator import BatchOrchestrator
from water_billing.jobs.stages.base import PipelineDependencies
from water_billing.jobs.worker import Worker
from water_billing.services.batch_service import CreateBatchInput, build_batch_service

app = typer.Typer(help="CLI for water abstraction billing batches.")
BATCH_ID_ARGUMENT = typer.Argument(..., help="Batch id.")


@app.callback()
def configure_logging() -> None:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command("healthcheck")
def healthcheck() -> None:
    """Verify that the CLI entrypoint is available."""
    typer.echo("water-billing is ready")


@app.command("create-batch")
def create_batch(
    region: str = typer.Option(..., help="Region code, e.g. A."),
    batch_type: BatchType = typer.Option(BatchType.ANNUAL, "--type"),
    financial_year_ending: int = typer.Option(..., "--year", min=2000, max=2100),
    season: BatchSeason = typer.Option(BatchSeason.ALL_YEAR),
) -> None:
    """Create a batch and queue its populate stage."""
    settings = get_settings()
    with (
        ChargeModuleClient.from_settings(settings) as charge_module,
        get_session_factory()() as session,
    ):
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).create_batch(
            CreateBatchInput(
                region_code=region,
                batch_type=batch_type,
                financial_year_ending=financial_year_ending,
                season=season,
            )
        )
    typer.echo(f"Batch {batch.id} created ({batch.status})")


@app.command("approve-batch")
def approve_batch(batch_id: UUID = BATCH_ID_ARGUMENT) -> None:
    """Approve a ready batch and send its bill run."""
    settings = get_settings()
    with (
        ChargeModuleClient.from_settings(settings) as charge_module,
        get_session_factory()() as session,
    ):
        batch = build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).approve_batch(batch_id)
    typer.echo(f"Batch {batch.id} sent (bill run {batch.bill_run_number or '-'})")


@app.command("delete-batch")
def delete_batch(batch_id: UUID = BATCH_ID_ARGUMENT) -> None:
    """Delete a batch and its Charge Module bill run."""
    settings = get_settings()
    with (
        ChargeModuleClient.from_settings(settings) as charge_module,
        get_session_factory()() as session,
    ):
        build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).delete_batch(batch_id)
    typer.echo(f"Batch {batch_id} deleted")


@app.command("refresh-batch")
def refresh_batch(batch_id: UUID = BATCH_ID_ARGUMENT) -> None:
    """Queue another totals refresh for a ready batch."""
    settings = get_settings()
    with (
        ChargeModuleClient.from_settings(settings) as charge_module,
        get_session_factory()() as session,
    ):
        build_batch_service(
            session, charge_module=charge_module, settings=settings
        ).refresh_batch(batch_id)
    typer.echo(f"Refresh queued for batch {batch_id}")


@app.command("worker")
def worker(
    once: bool = typer.Option(False, help="Run one polling round and exit."),
    poll_interval: float = typer.Option(1.0, min=0.1, help="Idle poll seconds."),
) -> None:
    """Run pipeline jobs from the billing queue."""
    settings = get_settings()
    session_factory = get_session_factory()
    charge_module = ChargeModuleClient.from_settings(settings)
    crm = CrmClient.from_settings(settings)
    try:
        orchestrator = BatchOrchestrator(
            session_factory=session_factory,
            dependencies=PipelineDependencies(
                settings=settings,
                charge_module=charge_module,
                reference_data=crm,
            ),
        )
        job_worker = Worker(
            session_factory=session_factory,
            orchestrator=orchestrator,
            settings=settings,
        )
        if once:
            outcomes = job_worker.run_once()
            typer.echo(f"Processed {len(outcomes)} job(s)")
            return
        try:
            job_worker.run_forever(poll_interval_seconds=poll_interval)
        except KeyboardInterrupt:
            job_worker.stop()
    finally:
        charge_module.close()
        crm.close()


def main() -> None:
    """Run the water-billing CLI application."""
    app()


if __name__ == "__main__":
    main()
