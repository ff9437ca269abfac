"""Recurring day/month abstraction windows and their calendar projections."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

from water_billing.domain.date_range import DateRange

SUMMER_START = (4, 1)
SUMMER_END = (10, 31)


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, moving days past the month end (e.g. 29 Feb) to its last day."""

    _, month_last_day = calendar.monthrange(year, month)
    return date(year=year, month=month, day=min(day, month_last_day))


@dataclass(slots=True, frozen=True)
class AbstractionPeriod:
    """Window of the year in which abstraction is permitted.

    The window repeats every calendar year. When the end falls before the
    start (e.g. 1 November to 31 March) the window wraps over the year end.
    """

    start_day: int
    start_month: int
    end_day: int
    end_month: int

    def __post_init__(self) -> None:
        for label, day, month in (
            ("start", self.start_day, self.start_month),
            ("end", self.end_day, self.end_month),
        ):
            if month < 1 or month > 12:
                msg = f"Abstraction period {label} month must be between 1 and 12."
                raise ValueError(msg)
            # Leap year used so that 29 February is accepted.
            _, max_day = calendar.monthrange(2000, month)
            if day < 1 or day > max_day:
                msg = f"Abstraction period {label} day is not valid for month {month}."
                raise ValueError(msg)

    @property
    def spans_year_end(self) -> bool:
        return (self.end_month, self.end_day) < (self.start_month, self.start_day)

    @property
    def is_summer(self) -> bool:
        """Whether the whole window sits inside the April to October season."""

        if self.spans_year_end:
            return False
        return (
            (self.start_month, self.start_day) >= SUMMER_START
            and (self.end_month, self.end_day) <= SUMMER_END
        )

    def occurrence_starting_in(self, year: int) -> DateRange:
        """Linear date range of the window that opens in ``year``."""

        start = clamped_date(year, self.start_month, self.start_day)
        end_year = year + 1 if self.spans_year_end else year
        end = clamped_date(end_year, self.end_month, self.end_day)
        return DateRange(start=start, end=end)

    def ranges_within(self, window: DateRange) -> list[DateRange]:
        """Split the recurring window into linear ranges clipped to ``window``."""

        if window.end is None:
            msg = "Abstraction ranges require a closed date window."
            raise ValueError(msg)

        ranges: list[DateRange] = []
        # The occurrence opening in the previous year may still be running.
        for year in range(window.start.year - 1, window.end.year + 1):
            clipped = self.occurrence_starting_in(year).intersection(window)
            if clipped is not None:
                ranges.append(clipped)
        return ranges

    def days_within(self, window: DateRange) -> int:
        return sum(part.days for part in self.ranges_within(window))
