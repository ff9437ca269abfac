"""Charge period and billable day arithmetic."""

from __future__ import annotations

from water_billing.domain.abstraction_period import AbstractionPeriod
from water_billing.domain.date_range import DateRange, intersect_all
from water_billing.domain.financial_year import FinancialYear


def get_charge_period(
    *,
    financial_year: FinancialYear,
    licence_range: DateRange,
    charge_version_range: DateRange,
) -> DateRange | None:
    """Return the chargeable part of a financial year, or None if none applies."""

    return intersect_all(
        financial_year.date_range,
        licence_range,
        charge_version_range,
    )


def get_billable_days(
    *,
    abstraction_period: AbstractionPeriod,
    charge_period: DateRange,
    effective_period: DateRange | None = None,
    time_limited_period: DateRange | None = None,
) -> int:
    """Count abstraction days inside the charge and effective periods."""

    window = intersect_all(
        charge_period,
        *(
            value
            for value in (effective_period, time_limited_period)
            if value is not None
        ),
    )
    if window is None:
        return 0
    return abstraction_period.days_within(window)


def get_authorised_days(
    *,
    abstraction_period: AbstractionPeriod,
    financial_year: FinancialYear,
) -> int:
    """Count abstraction days over the whole financial year."""

    return abstraction_period.days_within(financial_year.date_range)
