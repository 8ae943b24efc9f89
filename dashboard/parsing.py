"""Conversion of raw store rows into domain records.

Every store adapter (SQLite, hosted REST, file importer) receives loosely
typed mappings.  The helpers below normalise them into the frozen models and
raise :class:`~dashboard.errors.ValidationError` when a row cannot be trusted.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, TypeVar

from dateutil import parser as date_parser

from .errors import ValidationError
from .models import (
    UNCATEGORIZED,
    NotificationPriority,
    NotificationRecord,
    NotificationType,
    TransactionKind,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")

_NOTIFICATION_PAYLOAD_KEYS = ("title", "message", "data", "action_url", "action_label", "scheduled_for", "expires_at")


def records_from_rows(rows: Iterable[Mapping[str, Any]], parse: Callable[[Mapping[str, Any]], RecordT]) -> list[RecordT]:
    """Parse every row, dropping the malformed ones with a warning."""

    records: list[RecordT] = []
    for row in rows:
        try:
            records.append(parse(row))
        except ValidationError as exc:
            logger.warning("Dropping malformed row: %s", exc)
    return records


def transaction_from_row(row: Mapping[str, Any]) -> TransactionRecord:
    """Build a :class:`TransactionRecord` from a store row.

    Accepted keys follow the hosted schema (``type``, ``date``, nested
    ``categories.name``) as well as the model's own names (``kind``,
    ``occurred_on``, ``category``).  When no kind is given the sign of the
    amount decides it.
    """

    identifier = clean_string(row.get("id"))
    if not identifier:
        raise ValidationError(f"transaction without id: {dict(row)!r}")

    amount = parse_decimal(row.get("amount"))
    if amount is None:
        raise ValidationError(f"transaction {identifier} has no usable amount")

    raw_kind = clean_string(row.get("kind") or row.get("type")).lower()
    if raw_kind:
        try:
            kind = TransactionKind(raw_kind)
        except ValueError as exc:
            raise ValidationError(f"transaction {identifier} has unknown kind {raw_kind!r}") from exc
    else:
        kind = TransactionKind.EXPENSE if amount < 0 else TransactionKind.INCOME

    occurred_on = parse_date(row.get("occurred_on") or row.get("date"))
    if occurred_on is None:
        raise ValidationError(f"transaction {identifier} has no usable date")

    return TransactionRecord(
        id=identifier,
        amount=abs(amount),
        kind=kind,
        category=_category_name(row),
        occurred_on=occurred_on,
        description=clean_string(row.get("description")) or None,
    )


def notification_from_row(row: Mapping[str, Any]) -> NotificationRecord:
    """Build a :class:`NotificationRecord` from a store row or push message."""

    identifier = clean_string(row.get("id"))
    if not identifier:
        raise ValidationError(f"notification without id: {dict(row)!r}")

    created_at = parse_datetime(row.get("created_at"))
    if created_at is None:
        raise ValidationError(f"notification {identifier} has no usable created_at")

    read = row.get("read", row.get("is_read", False))
    if isinstance(read, str):
        read = read.strip().lower() in {"1", "true", "t", "yes"}

    payload = row.get("payload")
    if payload is None:
        payload = {key: row[key] for key in _NOTIFICATION_PAYLOAD_KEYS if row.get(key) is not None}
    if not isinstance(payload, Mapping):
        raise ValidationError(f"notification {identifier} payload is not a mapping")

    try:
        notification_type = NotificationType(row.get("type") or NotificationType.SYSTEM_UPDATE)
        priority = NotificationPriority(row.get("priority") or NotificationPriority.MEDIUM)
    except ValueError as exc:
        raise ValidationError(f"notification {identifier}: {exc}") from exc

    return NotificationRecord(
        id=identifier,
        created_at=created_at,
        read=bool(read),
        payload=dict(payload),
        type=notification_type,
        priority=priority,
    )


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def clean_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_decimal(value: object) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    # repr keeps 0.1 as 0.1 instead of its binary expansion.
    stringified = repr(value) if isinstance(value, float) else str(value).strip()
    if not stringified or stringified.lower() == "nan":
        return None
    normalised = stringified.replace("'", "").replace(" ", "").replace(",", ".")
    try:
        parsed = Decimal(normalised)
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


def parse_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    stringified = str(value).strip()
    if not stringified or stringified in {"NaT", "nan"}:
        return None
    try:
        return date_parser.isoparse(stringified).date()
    except ValueError:
        pass
    try:
        return date_parser.parse(stringified, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def parse_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        stringified = str(value).strip()
        if not stringified:
            return None
        try:
            parsed = date_parser.isoparse(stringified)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _category_name(row: Mapping[str, Any]) -> str:
    nested = row.get("categories")
    if isinstance(nested, Mapping):
        name = clean_string(nested.get("name"))
    else:
        name = clean_string(row.get("category"))
    return name or UNCATEGORIZED
