from datetime import date

import pytest

from loggit_storage.types import Event
from loggit_storage.utils import (
    is_valid_date,
    is_valid_month,
    month_bounds,
    next_month,
    sort_by_date,
    split_in_chunks,
    sync_timestamp,
)


class TestDates:
    @pytest.mark.parametrize("value", ["2024-03-14", "2024-02-29", "2000-01-01"])
    def test_valid_dates(self, value):
        assert is_valid_date(value)

    @pytest.mark.parametrize(
        "value", ["", "2024-3-14x", "2023-02-29", "14/03/2024", None, 20240314]
    )
    def test_invalid_dates(self, value):
        assert not is_valid_date(value)

    def test_months(self):
        assert is_valid_month("2024-03")
        assert not is_valid_month("2024-13")
        assert not is_valid_month(None)

    def test_month_bounds(self):
        assert month_bounds("2024-02") == ("2024-02-01", "2024-02-31")

    def test_next_month(self):
        assert next_month(date(2024, 3, 31)) == "2024-04"
        assert next_month(date(2024, 12, 15)) == "2025-01"
        assert next_month(date(2024, 1, 31)) == "2024-02"

    def test_sync_timestamp_format(self):
        stamp = sync_timestamp()
        assert len(stamp) == 19
        assert stamp[10] == " "


class TestSortByDate:
    def test_ascending(self):
        events = [Event("a", "A", "2024-03-05"), Event("b", "B", "2024-03-01")]
        assert [e.id for e in sort_by_date(events)] == ["b", "a"]

    def test_descending_reverses_stable_order(self):
        events = [
            Event("a", "A", "2024-03-01"),
            Event("b", "B", "2024-03-01"),
            Event("c", "C", "2024-03-02"),
        ]
        assert [e.id for e in sort_by_date(events, reverse=True)] == ["c", "b", "a"]

    def test_dicts(self):
        items = [{"date": "2024-03-02"}, {"date": "2024-03-01"}]
        assert sort_by_date(items) == [{"date": "2024-03-01"}, {"date": "2024-03-02"}]


class TestSplitInChunks:
    def test_exact_and_remainder(self):
        chunks = split_in_chunks(list(range(450)), 200)
        assert [len(c) for c in chunks] == [200, 200, 50]
        assert chunks[1][0] == 200

    def test_smaller_than_chunk(self):
        assert split_in_chunks([1, 2], 200) == [[1, 2]]

    def test_empty(self):
        assert split_in_chunks([], 200) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            split_in_chunks([1], 0)
