from __future__ import annotations

from datetime import date, timedelta

from water_billing.domain.date_range import DateRange
from water_billing.domain.date_range_splitter import (
    HistorySegment,
    SplitRange,
    split_date_range,
)

BASE = DateRange(start=date(2019, 4, 1), end=date(2020, 3, 31))


def assert_contiguous_cover(pieces: list[SplitRange[str]], base: DateRange) -> None:
    assert pieces[0].date_range.start == base.start
    assert pieces[-1].date_range.end == base.end
    for previous, current in zip(pieces, pieces[1:], strict=False):
        assert previous.date_range.end is not None
        assert previous.date_range.end + timedelta(days=1) == current.date_range.start


def test_split_by_changing_values() -> None:
    segments = [
        HistorySegment(
            date_range=DateRange(start=date(2018, 1, 1), end=date(2019, 9, 30)),
            value="company-a",
        ),
        HistorySegment(date_range=DateRange(start=date(2019, 10, 1)), value="company-b"),
    ]

    pieces = split_date_range(BASE, segments)

    assert [(piece.date_range, piece.value) for piece in pieces] == [
        (DateRange(start=date(2019, 4, 1), end=date(2019, 9, 30)), "company-a"),
        (DateRange(start=date(2019, 10, 1), end=date(2020, 3, 31)), "company-b"),
    ]
    assert pieces[0].original_range == segments[0].date_range
    assert_contiguous_cover(pieces, BASE)


def test_gaps_are_returned_without_value() -> None:
    segments = [
        HistorySegment(
            date_range=DateRange(start=date(2019, 6, 1), end=date(2019, 12, 31)),
            value="account-1",
        ),
    ]

    pieces = split_date_range(BASE, segments)

    assert [piece.value for piece in pieces] == [None, "account-1", None]
    assert pieces[0].original_range is None
    assert_contiguous_cover(pieces, BASE)


def test_equal_neighbours_are_merged() -> None:
    segments = [
        HistorySegment(
            date_range=DateRange(start=date(2019, 1, 1), end=date(2019, 7, 31)),
            value="company-a",
        ),
        HistorySegment(date_range=DateRange(start=date(2019, 8, 1)), value="company-a"),
    ]

    pieces = split_date_range(BASE, segments)

    assert len(pieces) == 1
    assert pieces[0].date_range == BASE
    assert pieces[0].original_range == DateRange(start=date(2019, 1, 1))


def test_custom_equality_merges_different_objects() -> None:
    segments = [
        HistorySegment(
            date_range=DateRange(start=date(2019, 4, 1), end=date(2019, 10, 31)),
            value="ACME ltd",
        ),
        HistorySegment(date_range=DateRange(start=date(2019, 11, 1)), value="Acme Ltd"),
    ]

    pieces = split_date_range(
        BASE,
        segments,
        is_equal=lambda left, right: left.lower() == right.lower(),
    )

    assert len(pieces) == 1
    assert pieces[0].value == "ACME ltd"


def test_overlapping_segments_keep_the_earlier_one() -> None:
    segments = [
        HistorySegment(date_range=DateRange(start=date(2019, 11, 1)), value="late"),
        HistorySegment(
            date_range=DateRange(start=date(2019, 4, 1), end=date(2019, 12, 31)),
            value="early",
        ),
    ]

    pieces = split_date_range(BASE, segments)

    assert [(piece.date_range.start, piece.value) for piece in pieces] == [
        (date(2019, 4, 1), "early"),
        (date(2020, 1, 1), "late"),
    ]
    assert_contiguous_cover(pieces, BASE)


def test_no_segments_yields_one_gap() -> None:
    pieces = split_date_range(BASE, [])

    assert pieces == [SplitRange(date_range=BASE, value=None, original_range=None)]
