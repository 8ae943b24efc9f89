"""Builders for the notification kinds the dashboard raises on its own."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from uuid import uuid4

from .errors import ValidationError
from .models import NotificationPriority, NotificationRecord, NotificationType

BUDGET_HIGH_RATIO = Decimal("0.9")


def new_notification(
    notification_type: NotificationType,
    title: str,
    message: str,
    *,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    data: Optional[dict[str, Any]] = None,
    action_url: Optional[str] = None,
    action_label: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> NotificationRecord:
    """Return an unread notification with a fresh id.

    Optional payload keys are only written when set, so stored payloads stay
    in the same shape the parser reads back.
    """

    payload: dict[str, Any] = {"title": title, "message": message, "data": dict(data or {})}
    if action_url:
        payload["action_url"] = action_url
    if action_label:
        payload["action_label"] = action_label
    if expires_at is not None:
        payload["expires_at"] = _as_utc(expires_at).isoformat()
    return NotificationRecord(
        id=str(uuid4()),
        created_at=now or datetime.now(timezone.utc),
        payload=payload,
        type=notification_type,
        priority=priority,
    )


def budget_priority(budget_amount: Decimal, spent_amount: Decimal) -> NotificationPriority:
    if spent_amount >= budget_amount:
        return NotificationPriority.URGENT
    if spent_amount >= budget_amount * BUDGET_HIGH_RATIO:
        return NotificationPriority.HIGH
    return NotificationPriority.MEDIUM


def budget_warning(category_id: str, budget_amount: Decimal, spent_amount: Decimal, **kwargs: Any) -> NotificationRecord:
    """Warn that ``spent_amount`` has used up part or all of a monthly budget."""

    if budget_amount <= 0:
        raise ValidationError("budget amount must be positive")
    percentage = int((spent_amount / budget_amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return new_notification(
        NotificationType.BUDGET_WARNING,
        f"Budget Alert: {percentage}% spent",
        f"You've spent {_money(spent_amount)} of your {_money(budget_amount)} budget this month.",
        priority=budget_priority(budget_amount, spent_amount),
        data={
            "category_id": category_id,
            "budget_amount": str(budget_amount),
            "spent_amount": str(spent_amount),
            "percentage": percentage,
        },
        action_url="/dashboard/budget",
        action_label="View Budget",
        **kwargs,
    )


def bill_reminder(description: str, amount: Decimal, due_date: date, **kwargs: Any) -> NotificationRecord:
    return new_notification(
        NotificationType.BILL_REMINDER,
        f"Bill Reminder: {description}",
        f"Don't forget about your upcoming payment of {_money(amount)} due on {due_date:%d %b %Y}.",
        data={"amount": str(amount), "due_date": due_date.isoformat(), "description": description},
        action_url="/dashboard/transactions",
        action_label="View Transactions",
        **kwargs,
    )


def goal_achievement(goal_name: str, target_amount: Decimal, **kwargs: Any) -> NotificationRecord:
    return new_notification(
        NotificationType.GOAL_ACHIEVEMENT,
        f"Goal Achieved: {goal_name}",
        f"Congratulations! You've reached your savings goal of {_money(target_amount)}.",
        priority=NotificationPriority.HIGH,
        data={"goal_name": goal_name, "target_amount": str(target_amount)},
        action_url="/dashboard/budget",
        action_label="View Goals",
        **kwargs,
    )


def system_update(title: str, message: str, action_url: Optional[str] = None, **kwargs: Any) -> NotificationRecord:
    return new_notification(
        NotificationType.SYSTEM_UPDATE,
        title,
        message,
        priority=NotificationPriority.LOW,
        action_url=action_url,
        action_label="Learn More" if action_url else None,
        **kwargs,
    )


def _money(amount: Decimal) -> str:
    return f"${amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
