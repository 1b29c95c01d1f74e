"""Date and sequence helpers shared by the store and the facade."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timedelta
from typing import Any, TypeVar

T = TypeVar("T")

DATE_FORMAT = "%Y-%m-%d"
MONTH_FORMAT = "%Y-%m"
SYNC_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def is_valid_date(value: Any) -> bool:
    """Check that a value is a YYYY-MM-DD calendar date."""
    if not isinstance(value, str):
        return False
    try:
        datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        return False
    return True


def is_valid_month(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        datetime.strptime(value, MONTH_FORMAT)
    except ValueError:
        return False
    return True


def today() -> str:
    return date.today().strftime(DATE_FORMAT)


def current_month() -> str:
    return date.today().strftime(MONTH_FORMAT)


def next_month(reference: date | None = None) -> str:
    """Month after the reference date (today by default) as YYYY-MM."""
    reference = reference or date.today()
    first_of_next = (reference.replace(day=1) + timedelta(days=32)).replace(day=1)
    return first_of_next.strftime(MONTH_FORMAT)


def sync_timestamp() -> str:
    return datetime.now().strftime(SYNC_DATE_FORMAT)


def month_bounds(month: str) -> tuple[str, str]:
    """Inclusive lexical date range covering a month.

    The upper bound is always day 31. Comparisons are on strings, so short
    months are covered without calendar arithmetic.
    """
    return f"{month}-01", f"{month}-31"


def sort_by_date(items: Sequence[T], reverse: bool = False) -> list[T]:
    """Stable ascending sort on the `date` attribute or key, optionally reversed afterwards."""

    def key(item: Any) -> str:
        if isinstance(item, dict):
            return item["date"]
        return item.date

    ordered = sorted(items, key=key)
    if reverse:
        ordered.reverse()
    return ordered


def split_in_chunks(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """Split a sequence into consecutive chunks, keeping order."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [list(items[i : i + chunk_size]) for i in range(0, len(items), chunk_size)]
