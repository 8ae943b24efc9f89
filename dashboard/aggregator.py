"""Pure reduction of a transaction snapshot into a dashboard summary.

:func:`aggregate` never performs I/O and never fails on well-formed input.
Callers hand it what the transaction store returned for a window: records
newest-first, already restricted to the user and the window start, and capped
at the configured fetch limit.  The aggregator does not page or re-fetch, so a
capped snapshot yields a summary of the newest records only; callers flag that
through ``truncated``.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

import pandas as pd

from .models import (
    AggregationWindow,
    CategoryTotal,
    MonthlyTrendPoint,
    SummaryMetrics,
    SummaryResult,
    TransactionKind,
    TransactionRecord,
)

TOP_CATEGORY_COUNT = 5
RECENT_TRANSACTION_COUNT = 10

_ZERO = Decimal("0")
_CENT = Decimal("0.01")


def aggregate(
    transactions: Sequence[TransactionRecord],
    window: AggregationWindow,
    *,
    truncated: bool = False,
) -> SummaryResult:
    """Compute totals, category breakdown and monthly trend in a single pass."""

    total_income = _ZERO
    total_expense = _ZERO
    category_totals: dict[str, Decimal] = {}
    monthly: dict[str, list[Decimal]] = {}

    for record in transactions:
        income_expense = monthly.setdefault(record.month_key, [_ZERO, _ZERO])
        if record.kind is TransactionKind.INCOME:
            total_income += record.amount
            income_expense[0] += record.amount
        else:
            total_expense += record.amount
            income_expense[1] += record.amount
            category_totals[record.category] = category_totals.get(record.category, _ZERO) + record.amount

    category_breakdown = tuple(
        CategoryTotal(category=name, total=total, transaction_count=_expense_count(transactions, name))
        for name, total in sorted(category_totals.items(), key=_category_sort_key)
        if total != _ZERO
    )
    monthly_trend = tuple(
        MonthlyTrendPoint(month_key=month_key, income=income, expense=expense)
        for month_key, (income, expense) in sorted(monthly.items())
    )

    return SummaryResult(
        window=window,
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        category_breakdown=category_breakdown,
        monthly_trend=monthly_trend,
        top_categories=category_breakdown[:TOP_CATEGORY_COUNT],
        recent_transactions=tuple(transactions[:RECENT_TRANSACTION_COUNT]),
        transaction_count=len(transactions),
        truncated=truncated,
    )


def summary_metrics(summary: SummaryResult) -> SummaryMetrics:
    """Derive savings rate and monthly averages from a summary.

    The savings rate is a percentage of income and is zero when there is no
    income.  Averages divide by the number of months that have activity.
    """

    savings_rate = _ZERO
    if summary.total_income > _ZERO:
        savings_rate = (summary.balance / summary.total_income * 100).quantize(_CENT, rounding=ROUND_HALF_UP)

    months = len(summary.monthly_trend)
    if not months:
        return SummaryMetrics(savings_rate=savings_rate, average_monthly_income=_ZERO, average_monthly_expense=_ZERO)

    return SummaryMetrics(
        savings_rate=savings_rate,
        average_monthly_income=(summary.total_income / months).quantize(_CENT, rounding=ROUND_HALF_UP),
        average_monthly_expense=(summary.total_expense / months).quantize(_CENT, rounding=ROUND_HALF_UP),
    )


def summary_to_frame(summary: SummaryResult) -> pd.DataFrame:
    """Return the monthly trend as a :class:`~pandas.DataFrame` for export."""

    columns = ["month", "label", "income", "expense", "balance"]
    rows = [
        {
            "month": point.month_key,
            "label": point.label,
            "income": point.income,
            "expense": point.expense,
            "balance": point.balance,
        }
        for point in summary.monthly_trend
    ]
    return pd.DataFrame(rows, columns=columns)


def _category_sort_key(item: tuple[str, Decimal]) -> tuple[Decimal, str]:
    name, total = item
    return -total, name


def _expense_count(transactions: Sequence[TransactionRecord], category: str) -> int:
    return sum(1 for record in transactions if record.category == category and record.is_expense)
