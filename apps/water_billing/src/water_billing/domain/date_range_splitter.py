"""Split a date range by the history of one attribute."""

from __future__ import annotations

import operator
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from water_billing.domain.date_range import DateRange, day_after, day_before

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class HistorySegment(Generic[T]):
    """Value of an attribute during one (possibly open-ended) date range."""

    date_range: DateRange
    value: T


@dataclass(slots=True, frozen=True)
class SplitRange(Generic[T]):
    """Sub-range of the base range over which the attribute is constant.

    ``original_range`` is the unclipped range of the source segment(s), or
    None for a gap where no segment applies (``value`` is then None too).
    """

    date_range: DateRange
    value: T | None
    original_range: DateRange | None


def split_date_range(
    base: DateRange,
    segments: Sequence[HistorySegment[T]],
    *,
    is_equal: Callable[[T, T], bool] = operator.eq,
) -> list[SplitRange[T]]:
    """Cut ``base`` into maximal contiguous ranges of constant attribute value.

    Segments are processed in start order. Where segments overlap the earlier
    one wins, gaps produce ranges with a None value, and neighbouring ranges
    whose values compare equal are merged.
    """

    if base.end is None:
        msg = "The base range must have an end date to be split."
        raise ValueError(msg)

    pieces: list[SplitRange[T]] = []
    cursor = base.start
    for segment in sorted(segments, key=lambda item: item.date_range.start):
        if cursor > base.end:
            break
        clipped = segment.date_range.intersection(base)
        if clipped is None or clipped.end is None or clipped.end < cursor:
            continue
        start = max(clipped.start, cursor)
        if start > cursor:
            pieces.append(
                SplitRange(
                    date_range=DateRange(start=cursor, end=day_before(start)),
                    value=None,
                    original_range=None,
                )
            )
        pieces.append(
            SplitRange(
                date_range=DateRange(start=start, end=clipped.end),
                value=segment.value,
                original_range=segment.date_range,
            )
        )
        cursor = day_after(clipped.end)

    if cursor <= base.end:
        pieces.append(
            SplitRange(
                date_range=DateRange(start=cursor, end=base.end),
                value=None,
                original_range=None,
            )
        )
    return _merge_equal_neighbours(pieces, is_equal)


def _merge_equal_neighbours(
    pieces: list[SplitRange[T]],
    is_equal: Callable[[T, T], bool],
) -> list[SplitRange[T]]:
    merged: list[SplitRange[T]] = []
    for piece in pieces:
        if merged and _same_value(merged[-1].value, piece.value, is_equal):
            previous = merged.pop()
            merged.append(
                SplitRange(
                    date_range=DateRange(
                        start=previous.date_range.start,
                        end=piece.date_range.end,
                    ),
                    value=previous.value,
                    original_range=_span(previous.original_range, piece.original_range),
                )
            )
            continue
        merged.append(piece)
    return merged


def _same_value(
    left: T | None,
    right: T | None,
    is_equal: Callable[[T, T], bool],
) -> bool:
    if left is None or right is None:
        return left is None and right is None
    return is_equal(left, right)


def _span(left: DateRange | None, right: DateRange | None) -> DateRange | None:
    if left is None or right is None:
        return left or right
    end = None if left.end is None or right.end is None else max(left.end, right.end)
    return DateRange(start=min(left.start, right.start), end=end)
