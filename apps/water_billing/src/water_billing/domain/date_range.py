"""Calendar date ranges with optional open end."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta


@dataclass(slots=True, frozen=True)
class DateRange:
    """Inclusive range of calendar dates; ``end=None`` means open-ended."""

    start: date
    end: date | None = None

    def __post_init__(self) -> None:
        if self.end is not None and self.end < self.start:
            msg = f"Date range end {self.end} is before start {self.start}."
            raise ValueError(msg)

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def days(self) -> int:
        """Number of calendar days in a closed range, both ends included."""

        if self.end is None:
            msg = "Cannot count days in an open-ended date range."
            raise ValueError(msg)
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        return self.start <= value and (self.end is None or value <= self.end)

    def contains_range(self, other: DateRange) -> bool:
        if not self.contains(other.start):
            return False
        if other.end is None:
            return self.end is None
        return self.contains(other.end)

    def overlaps(self, other: DateRange) -> bool:
        return self.intersection(other) is not None

    def intersection(self, other: DateRange) -> DateRange | None:
        """Return the common sub-range, or None when the ranges are disjoint."""

        start = max(self.start, other.start)
        ends = [value for value in (self.end, other.end) if value is not None]
        end = min(ends) if ends else None
        if end is not None and end < start:
            return None
        return DateRange(start=start, end=end)


def intersect_all(first: DateRange, *others: DateRange) -> DateRange | None:
    """Intersect every range, returning None when any pair is disjoint."""

    result: DateRange | None = first
    for other in others:
        if result is None:
            return None
        result = result.intersection(other)
    return result


def day_before(value: date) -> date:
    return value - timedelta(days=1)


def day_after(value: date) -> date:
    return value + timedelta(days=1)
