from datetime import date, timedelta
from decimal import Decimal

from conftest import make_tx
from dashboard.aggregator import aggregate, summary_metrics, summary_to_frame
from dashboard.models import AggregationWindow

WINDOW = AggregationWindow(start=date(2025, 1, 1))


def test_aggregate_concrete_case(sample_transactions):
    summary = aggregate(sample_transactions, WINDOW)

    assert summary.total_income == Decimal("100")
    assert summary.total_expense == Decimal("50")
    assert summary.balance == Decimal("50")
    assert [(c.category, c.total, c.transaction_count) for c in summary.category_breakdown] == [("Food", Decimal("50"), 2)]
    assert [(p.label, p.income, p.expense) for p in summary.monthly_trend] == [
        ("Jan", Decimal("100"), Decimal("40")),
        ("Feb", Decimal("0"), Decimal("10")),
    ]
    assert [p.month_key for p in summary.monthly_trend] == ["2025-01", "2025-02"]


def test_aggregate_empty_input():
    summary = aggregate([], WINDOW)

    assert summary.total_income == 0
    assert summary.total_expense == 0
    assert summary.balance == 0
    assert summary.category_breakdown == ()
    assert summary.monthly_trend == ()
    assert summary.top_categories == ()
    assert summary.recent_transactions == ()
    assert summary.transaction_count == 0


def test_category_totals_sum_to_total_expense():
    trans = [
        make_tx("t1", "12.30", "expense", date(2025, 3, 9), category="Food"),
        make_tx("t2", "0.10", "expense", date(2025, 3, 8), category="Transport"),
        make_tx("t3", "0.20", "expense", date(2025, 3, 7), category="Transport"),
        make_tx("t4", "999.99", "income", date(2025, 3, 6), category="Salary"),
        make_tx("t5", "45.05", "expense", date(2025, 2, 2), category="Rent"),
    ]
    summary = aggregate(trans, WINDOW)

    assert sum(c.total for c in summary.category_breakdown) == summary.total_expense
    assert summary.total_expense == Decimal("57.65")
    assert summary.balance == summary.total_income - summary.total_expense


def test_balance_is_stable_across_repeated_aggregation():
    trans = [make_tx(f"t{i}", "0.10", "expense" if i % 2 else "income", date(2025, 1, 1 + i % 28)) for i in range(60)]
    balances = {aggregate(trans, WINDOW).balance for _ in range(5)}

    assert balances == {Decimal("0.00")}


def test_monthly_trend_partitions_transactions():
    trans = [
        make_tx("t1", "5", "expense", date(2025, 3, 31)),
        make_tx("t2", "7", "income", date(2025, 3, 1)),
        make_tx("t3", "11", "expense", date(2025, 2, 28)),
        make_tx("t4", "13", "income", date(2024, 12, 31)),
    ]
    summary = aggregate(trans, AggregationWindow(start=date(2024, 12, 1)))

    assert [p.month_key for p in summary.monthly_trend] == ["2024-12", "2025-02", "2025-03"]
    assert sum(p.income + p.expense for p in summary.monthly_trend) == Decimal("36")
    assert summary.monthly_trend[0].label == "Dec"


def test_categories_sorted_by_total_then_name():
    trans = [
        make_tx("t1", "20", "expense", date(2025, 1, 5), category="Transport"),
        make_tx("t2", "20", "expense", date(2025, 1, 4), category="Books"),
        make_tx("t3", "50", "expense", date(2025, 1, 3), category="Rent"),
    ]
    summary = aggregate(trans, WINDOW)

    assert [c.category for c in summary.category_breakdown] == ["Rent", "Books", "Transport"]


def test_top_categories_is_prefix_of_breakdown():
    trans = [
        make_tx(f"t{i}", str(10 * (i + 1)), "expense", date(2025, 1, 1 + i), category=f"Cat{i}")
        for i in range(7)
    ]
    summary = aggregate(trans, WINDOW)

    assert len(summary.category_breakdown) == 7
    assert summary.top_categories == summary.category_breakdown[:5]
    assert summary.top_categories[0].category == "Cat6"


def test_income_categories_are_not_in_breakdown(sample_transactions):
    summary = aggregate(sample_transactions, WINDOW)

    assert "Salary" not in [c.category for c in summary.category_breakdown]


def test_zero_expense_category_is_not_emitted():
    trans = [
        make_tx("t1", "0", "expense", date(2025, 1, 2), category="Refunds"),
        make_tx("t2", "5", "expense", date(2025, 1, 1), category="Food"),
    ]
    summary = aggregate(trans, WINDOW)

    assert [c.category for c in summary.category_breakdown] == ["Food"]


def test_recent_transactions_keeps_first_ten():
    start = date(2025, 1, 31)
    trans = [make_tx(f"t{i}", "1", "expense", start - timedelta(days=i)) for i in range(15)]
    summary = aggregate(trans, WINDOW)

    assert [t.id for t in summary.recent_transactions] == [f"t{i}" for i in range(10)]
    assert summary.transaction_count == 15


def test_truncated_flag_is_carried():
    assert aggregate([], WINDOW, truncated=True).truncated is True
    assert aggregate([], WINDOW).truncated is False


def test_summary_metrics(sample_transactions):
    metrics = summary_metrics(aggregate(sample_transactions, WINDOW))

    assert metrics.savings_rate == Decimal("50.00")
    assert metrics.average_monthly_income == Decimal("50.00")
    assert metrics.average_monthly_expense == Decimal("25.00")


def test_summary_metrics_without_income():
    metrics = summary_metrics(aggregate([], WINDOW))

    assert metrics.savings_rate == 0
    assert metrics.average_monthly_income == 0
    assert metrics.average_monthly_expense == 0


def test_summary_to_frame(sample_transactions):
    frame = summary_to_frame(aggregate(sample_transactions, WINDOW))

    assert list(frame.columns) == ["month", "label", "income", "expense", "balance"]
    assert frame["month"].tolist() == ["2025-01", "2025-02"]
    assert frame["balance"].tolist() == [Decimal("60"), Decimal("-10")]
