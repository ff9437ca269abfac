"""Financial year value type (1 April to 31 March)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from water_billing.domain.date_range import DateRange

FINANCIAL_YEAR_START_MONTH = 4


@dataclass(slots=True, frozen=True, order=True)
class FinancialYear:
    """Financial year identified by the calendar year in which it ends."""

    year_ending: int

    @classmethod
    def from_date(cls, value: date) -> FinancialYear:
        if value.month >= FINANCIAL_YEAR_START_MONTH:
            return cls(year_ending=value.year + 1)
        return cls(year_ending=value.year)

    @property
    def start(self) -> date:
        return date(self.year_ending - 1, FINANCIAL_YEAR_START_MONTH, 1)

    @property
    def end(self) -> date:
        return date(self.year_ending, 3, 31)

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start, end=self.end)

    def __str__(self) -> str:
        return f"{self.year_ending - 1}/{self.year_ending % 100:02d}"


def financial_years_between(start: FinancialYear, end: FinancialYear) -> list[FinancialYear]:
    """Return every financial year from ``start`` to ``end`` inclusive."""

    if end < start:
        msg = "End financial year cannot be earlier than start financial year."
        raise ValueError(msg)
    return [
        FinancialYear(year_ending=year_ending)
        for year_ending in range(start.year_ending, end.year_ending + 1)
    ]
