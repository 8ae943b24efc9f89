"""Named aggregation windows offered by the dashboard range selector."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Callable, Optional

from .models import AggregationWindow

DEFAULT_RANGE = "this-month"


def _today(today: date) -> date:
    return today


def _this_week(today: date) -> date:
    return today - timedelta(days=7)


def _this_month(today: date) -> date:
    return today.replace(day=1)


_RANGE_STARTS: dict[str, Callable[[date], date]] = {
    "today": _today,
    "this-week": _this_week,
    "this-month": _this_month,
}

RANGE_NAMES = tuple(_RANGE_STARTS)


def window_for_range(name: Optional[str] = None, today: Optional[date] = None) -> AggregationWindow:
    """Return the open-ended window for a named range.

    ``this-week`` is a rolling seven days rather than a calendar week.  The
    returned window has no end, i.e. it runs up to now.

    Raises:
        ValueError: If ``name`` is not one of :data:`RANGE_NAMES`.
    """

    key = name or DEFAULT_RANGE
    try:
        start_for = _RANGE_STARTS[key]
    except KeyError:
        raise ValueError(f"unknown range {key!r}, expected one of {', '.join(RANGE_NAMES)}") from None
    return AggregationWindow(start=start_for(today or date.today()))
