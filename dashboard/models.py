"""Domain models used by the finance_dash core.

The classes defined here are lightweight data containers that do not know
anything about persistence or transport concerns.  Transaction and
notification records are frozen: the aggregator only reads them and the
notification hub replaces records instead of mutating them in place.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

UNCATEGORIZED = "Uncategorized"


class TransactionKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """A single income or expense row as supplied by a transaction store.

    :attr:`amount` is always a non-negative magnitude; the direction of the
    cash flow is carried by :attr:`kind`.
    """

    id: str
    amount: Decimal
    kind: TransactionKind
    category: str
    occurred_on: date
    description: Optional[str] = None

    @property
    def month_key(self) -> str:
        return self.occurred_on.strftime("%Y-%m")

    @property
    def is_expense(self) -> bool:
        return self.kind is TransactionKind.EXPENSE


@dataclass(frozen=True, slots=True)
class AggregationWindow:
    """Date range a summary is computed over.

    ``end`` is exclusive; ``None`` means the window is open up to now.
    """

    start: date
    end: Optional[date] = None

    def __post_init__(self) -> None:
        if self.end is not None and self.end < self.start:
            raise ValueError(f"window end {self.end} precedes start {self.start}")

    def contains(self, day: date) -> bool:
        if day < self.start:
            return False
        return self.end is None or day < self.end


@dataclass(frozen=True, slots=True)
class CategoryTotal:
    category: str
    total: Decimal
    transaction_count: int


@dataclass(frozen=True, slots=True)
class MonthlyTrendPoint:
    month_key: str
    income: Decimal
    expense: Decimal

    @property
    def label(self) -> str:
        """Short month name derived from :attr:`month_key` only, e.g. ``Jan``."""

        return calendar.month_abbr[int(self.month_key[5:7])]

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


@dataclass(frozen=True, slots=True)
class SummaryResult:
    """Read-only snapshot handed to the presentation layer.

    Attributes:
        window: The window the summary was requested for.
        total_income: Sum of all income amounts.
        total_expense: Sum of all expense amounts.
        balance: ``total_income - total_expense``.
        category_breakdown: Expense totals per category, largest first.
        monthly_trend: Income and expense per calendar month, oldest first.
        top_categories: First five entries of :attr:`category_breakdown`.
        recent_transactions: First ten records of the newest-first input.
        transaction_count: Number of records the summary was computed from.
        truncated: ``True`` when the store hit its fetch cap, meaning older
            records inside the window may be missing from the summary.
    """

    window: AggregationWindow
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    category_breakdown: tuple[CategoryTotal, ...]
    monthly_trend: tuple[MonthlyTrendPoint, ...]
    top_categories: tuple[CategoryTotal, ...]
    recent_transactions: tuple[TransactionRecord, ...]
    transaction_count: int = 0
    truncated: bool = False


@dataclass(frozen=True, slots=True)
class SummaryMetrics:
    savings_rate: Decimal
    average_monthly_income: Decimal
    average_monthly_expense: Decimal


class NotificationType(str, Enum):
    BILL_REMINDER = "bill_reminder"
    BUDGET_WARNING = "budget_warning"
    GOAL_ACHIEVEMENT = "goal_achievement"
    SYSTEM_UPDATE = "system_update"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    """A notification as stored server-side or delivered over the push channel."""

    id: str
    created_at: datetime
    read: bool = False
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    type: NotificationType = NotificationType.SYSTEM_UPDATE
    priority: NotificationPriority = NotificationPriority.MEDIUM


@dataclass(frozen=True, slots=True)
class NotificationState:
    """Read-only view of the hub's inbox.

    ``degraded`` is set while the push channel is down and the hub only
    reflects pulled snapshots and local intents.
    """

    items: tuple[NotificationRecord, ...] = ()
    unread_count: int = 0
    degraded: bool = False


__all__ = [
    "UNCATEGORIZED",
    "TransactionKind",
    "TransactionRecord",
    "AggregationWindow",
    "CategoryTotal",
    "MonthlyTrendPoint",
    "SummaryResult",
    "SummaryMetrics",
    "NotificationType",
    "NotificationPriority",
    "NotificationRecord",
    "NotificationState",
]
