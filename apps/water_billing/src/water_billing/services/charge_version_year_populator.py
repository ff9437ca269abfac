"""Expand a batch into charge version year units of work."""

from __future__ import annotations

import logging
from datetime import date
from typing import Protocol
from uuid import UUID

from water_billing.db.models.batch import Batch, BatchType
from water_billing.db.models.charge_version import ChargeVersion
from water_billing.db.models.charge_version_year import (
    ChargeVersionYear,
    TransactionType,
)
from water_billing.domain.charge_period import get_charge_period
from water_billing.domain.financial_year import FinancialYear, financial_years_between
from water_billing.services.pipeline_context import PipelineContext

logger = logging.getLogger(__name__)

UnitKey = tuple[TransactionType, bool]


class BillableChargeVersionReader(Protocol):
    def list_billable_in_region_and_year(
        self,
        *,
        region_id: UUID,
        financial_year: FinancialYear,
    ) -> list[ChargeVersion]: ...


class ChargeVersionYearWriter(Protocol):
    def create_if_missing(
        self,
        *,
        batch_id: UUID,
        charge_version_id: UUID,
        financial_year_ending: int,
        transaction_type: TransactionType,
        is_summer: bool,
    ) -> tuple[ChargeVersionYear, bool]: ...


class ChargeVersionYearPopulator:
    """Decide which charge versions are billed in which years of a batch."""

    def __init__(
        self,
        *,
        charge_version_repository: BillableChargeVersionReader,
        charge_version_year_repository: ChargeVersionYearWriter,
        context: PipelineContext,
        nald_switch_over_date: date,
    ) -> None:
        self._charge_version_repository = charge_version_repository
        self._charge_version_year_repository = charge_version_year_repository
        self._context = context
        self._nald_switch_over_date = nald_switch_over_date

    def populate(self, batch: Batch) -> list[ChargeVersionYear]:
        """Persist every unit of the batch; safe to repeat after a crash."""

        units: list[ChargeVersionYear] = []
        created_count = 0
        for financial_year in financial_years_between(batch.start_year, batch.end_year):
            charge_versions = (
                self._charge_version_repository.list_billable_in_region_and_year(
                    region_id=batch.region_id,
                    financial_year=financial_year,
                )
            )
            for charge_version in charge_versions:
                for transaction_type, is_summer in self.units_for(
                    batch=batch,
                    charge_version=charge_version,
                    financial_year=financial_year,
                ):
                    unit, created = self._charge_version_year_repository.create_if_missing(
                        batch_id=batch.id,
                        charge_version_id=charge_version.id,
                        financial_year_ending=financial_year.year_ending,
                        transaction_type=transaction_type,
                        is_summer=is_summer,
                    )
                    units.append(unit)
                    created_count += int(created)

        logger.info(
            "charge_version_years_populated",
            extra={
                "batch_id": str(batch.id),
                "unit_count": len(units),
                "created_count": created_count,
            },
        )
        return units

    def units_for(
        self,
        *,
        batch: Batch,
        charge_version: ChargeVersion,
        financial_year: FinancialYear,
    ) -> list[UnitKey]:
        if batch.batch_type == BatchType.ANNUAL:
            return [(TransactionType.ANNUAL, False)]

        if batch.batch_type == BatchType.TWO_PART_TARIFF:
            seasons = self.two_part_tariff_seasons(charge_version, financial_year)
            if batch.is_summer in seasons:
                return [(TransactionType.TWO_PART_TARIFF, batch.is_summer)]
            return []

        if not charge_version.include_in_supplementary_billing:
            return []
        units: list[UnitKey] = [(TransactionType.ANNUAL, False)]
        sent_seasons = self._context.sent_two_part_tariff_seasons(
            region_id=batch.region_id,
            financial_year_ending=financial_year.year_ending,
        )
        if sent_seasons:
            eligible = self.two_part_tariff_seasons(charge_version, financial_year)
            for is_summer in (True, False):
                if is_summer in sent_seasons and is_summer in eligible:
                    units.append((TransactionType.TWO_PART_TARIFF, is_summer))
        return units

    def two_part_tariff_seasons(
        self,
        charge_version: ChargeVersion,
        financial_year: FinancialYear,
    ) -> set[bool]:
        """Seasons (``is_summer`` values) in which the version is TPT billable.

        Charge periods starting before the switch-over date only ever had
        winter and all year two-part tariff billing.
        """

        if not charge_version.is_two_part_tariff:
            return set()
        licence = charge_version.licence
        charge_period = get_charge_period(
            financial_year=financial_year,
            licence_range=licence.date_range,
            charge_version_range=charge_version.date_range,
        )
        if charge_period is None:
            return set()
        if charge_period.start < self._nald_switch_over_date:
            return {False}
        return {
            requirement.is_summer
            for requirement in self._context.return_requirements(licence.id)
            if requirement.is_two_part_tariff
            and requirement.date_range.overlaps(charge_period)
        }
