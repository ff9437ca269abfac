"""Stage 1: expand a batch into charge version year units."""

from __future__ import annotations

import logging

from water_billing.db.models.batch import BatchErrorCode, BatchStatus
from water_billing.db.models.charge_version_year import ChargeVersionYearStatus
from water_billing.jobs.messages import JobMessage, StageName
from water_billing.jobs.stages.base import (
    Repositories,
    Stage,
    load_processing_batch,
    queue_prepare_when_units_settled,
)
from water_billing.services.charge_version_year_populator import (
    ChargeVersionYearPopulator,
)
from water_billing.services.pipeline_context import PipelineContext

logger = logging.getLogger(__name__)


class PopulateStage(Stage):
    name = StageName.POPULATE
    error_code = BatchErrorCode.FAILED_TO_POPULATE_CHARGE_VERSIONS

    def handle(self, repositories: Repositories, message: JobMessage) -> None:
        batch = load_processing_batch(repositories, message.payload.batch_id)
        if batch is None:
            return

        populator = ChargeVersionYearPopulator(
            charge_version_repository=repositories.charge_versions,
            charge_version_year_repository=repositories.charge_version_years,
            context=PipelineContext(
                batch_repository=repositories.batches,
                charge_version_repository=repositories.charge_versions,
            ),
            nald_switch_over_date=self.dependencies.settings.nald_switch_over_date,
        )
        units = populator.populate(batch)
        if not units:
            repositories.batches.transition_status(batch.id, target=BatchStatus.EMPTY)
            logger.info("batch_empty", extra={"batch_id": str(batch.id)})
            return

        queued = 0
        for unit in units:
            if unit.status != ChargeVersionYearStatus.PROCESSING:
                continue
            queued += int(
                self.enqueue(
                    repositories,
                    StageName.PROCESS,
                    batch_id=batch.id,
                    unit_id=unit.id,
                )
            )
        logger.info(
            "process_jobs_queued",
            extra={"batch_id": str(batch.id), "queued_count": queued},
        )

    def on_complete(self, repositories: Repositories, message: JobMessage) -> None:
        # Units left over from an earlier run may all be settled already.
        queue_prepare_when_units_settled(self, repositories, message.payload.batch_id)
