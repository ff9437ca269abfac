"""Lookups shared by the charge version years of one populate job."""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from water_billing.db.models.batch import Batch
from water_billing.db.models.return_requirement import ReturnRequirement


class SentBatchReader(Protocol):
    def list_sent_two_part_tariff_batches(
        self,
        *,
        region_id: UUID,
        financial_year_ending: int,
    ) -> list[Batch]: ...


class ReturnRequirementReader(Protocol):
    def list_active_return_requirements(
        self,
        licence_id: UUID,
    ) -> list[ReturnRequirement]: ...


class PipelineContext:
    """Per-job cache; build a new one for every job execution."""

    def __init__(
        self,
        *,
        batch_repository: SentBatchReader,
        charge_version_repository: ReturnRequirementReader,
    ) -> None:
        self._batch_repository = batch_repository
        self._charge_version_repository = charge_version_repository
        self._sent_seasons: dict[tuple[UUID, int], frozenset[bool]] = {}
        self._return_requirements: dict[UUID, list[ReturnRequirement]] = {}

    def sent_two_part_tariff_seasons(
        self,
        *,
        region_id: UUID,
        financial_year_ending: int,
    ) -> frozenset[bool]:
        """Seasons (``is_summer`` values) already billed by a sent TPT batch."""

        key = (region_id, financial_year_ending)
        if key not in self._sent_seasons:
            batches = self._batch_repository.list_sent_two_part_tariff_batches(
                region_id=region_id,
                financial_year_ending=financial_year_ending,
            )
            self._sent_seasons[key] = frozenset(batch.is_summer for batch in batches)
        return self._sent_seasons[key]

    def return_requirements(self, licence_id: UUID) -> list[ReturnRequirement]:
        if licence_id not in self._return_requirements:
            self._return_requirements[licence_id] = (
                self._charge_version_repository.list_active_return_requirements(
                    licence_id
                )
            )
        return self._return_requirements[licence_id]
