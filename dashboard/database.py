"""SQLite persistence layer for the finance_dash core.

The repository provides a small API that hides SQL details from the rest of
the code.  It relies on the standard library :mod:`sqlite3` module and returns
plain dictionaries; conversion into domain records happens in
:mod:`dashboard.parsing` so malformed rows surface as validation errors rather
than crashes.

Store adapters call the repository from worker threads, so the connection is
opened with ``check_same_thread=False`` and every statement runs under a lock.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .models import NotificationRecord, TransactionRecord
from .parsing import parse_datetime


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        self._connection = sqlite3.connect(database_path, check_same_thread=False)
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        with self._lock:
            self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        with self._lock:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    type TEXT NOT NULL,
                    category TEXT,
                    date TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_transactions_user_date
                    ON transactions (user_id, date);

                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_notifications_user_created
                    ON notifications (user_id, created_at);

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            self._connection.commit()

    # ------------------------------------------------------------------
    # Transaction persistence
    # ------------------------------------------------------------------
    def upsert_transactions(self, user_id: str, transactions: Iterable[TransactionRecord]) -> int:
        """Insert or update transactions for ``user_id``.

        Returns the number of rows written.  Re-importing the same ids keeps
        the latest values thanks to ``ON CONFLICT`` semantics.
        """

        created_at = _utcnow_iso()
        written = 0
        with self._lock:
            cursor = self._connection.cursor()
            for tx in transactions:
                cursor.execute(
                    """
                    INSERT INTO transactions (
                        id, user_id, amount, type, category, date, description, created_at
                    ) VALUES (
                        :id, :user_id, :amount, :type, :category, :date, :description, :created_at
                    )
                    ON CONFLICT(id) DO UPDATE SET
                        user_id=excluded.user_id,
                        amount=excluded.amount,
                        type=excluded.type,
                        category=excluded.category,
                        date=excluded.date,
                        description=excluded.description
                    ;
                    """,
                    {
                        "id": tx.id,
                        "user_id": user_id,
                        "amount": str(tx.amount),
                        "type": tx.kind.value,
                        "category": tx.category,
                        "date": tx.occurred_on.isoformat(),
                        "description": tx.description,
                        "created_at": created_at,
                    },
                )
                written += 1
            self._connection.commit()
        return written

    def fetch_transactions(self, user_id: str, since: date, limit: int) -> list[dict[str, object]]:
        """Return at most ``limit`` transactions on or after ``since``, newest first."""

        with self._lock:
            rows = self._connection.execute(
                """
                SELECT id, amount, type, category, date, description
                FROM transactions
                WHERE user_id = ? AND date >= ?
                ORDER BY date DESC, created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, since.isoformat(), limit),
            ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Notification persistence
    # ------------------------------------------------------------------
    def insert_notification(self, user_id: str, notification: NotificationRecord) -> None:
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO notifications (id, user_id, type, priority, payload, is_read, created_at)
                VALUES (:id, :user_id, :type, :priority, :payload, :is_read, :created_at)
                """,
                {
                    "id": notification.id,
                    "user_id": user_id,
                    "type": notification.type.value,
                    "priority": notification.priority.value,
                    "payload": json.dumps(notification.payload, default=str),
                    "is_read": int(notification.read),
                    "created_at": notification.created_at.isoformat(),
                },
            )
            self._connection.commit()

    def fetch_notifications(self, user_id: str, limit: int = 50, offset: int = 0) -> list[dict[str, object]]:
        """Return the user's notifications, most recent first."""

        with self._lock:
            rows = self._connection.execute(
                """
                SELECT id, type, priority, payload, is_read, created_at
                FROM notifications
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (user_id, limit, offset),
            ).fetchall()

        notifications = []
        for row in rows:
            payload = dict(row)
            payload["payload"] = json.loads(payload["payload"])
            payload["is_read"] = bool(payload["is_read"])
            notifications.append(payload)
        return notifications

    def count_unread_notifications(self, user_id: str) -> int:
        with self._lock:
            row = self._connection.execute(
                "SELECT COUNT(*) AS unread FROM notifications WHERE user_id = ? AND is_read = 0",
                (user_id,),
            ).fetchone()
        return int(row["unread"]) if row else 0

    def mark_notification_read(self, user_id: str, notification_id: str) -> None:
        with self._lock:
            self._connection.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND id = ?",
                (user_id, notification_id),
            )
            self._connection.commit()

    def mark_all_notifications_read(self, user_id: str) -> None:
        with self._lock:
            self._connection.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
                (user_id,),
            )
            self._connection.commit()

    def delete_notification(self, user_id: str, notification_id: str) -> None:
        with self._lock:
            self._connection.execute(
                "DELETE FROM notifications WHERE user_id = ? AND id = ?",
                (user_id, notification_id),
            )
            self._connection.commit()

    def delete_expired_notifications(self, user_id: str, now: Optional[datetime] = None) -> list[str]:
        """Delete notifications whose ``expires_at`` lies before ``now``.

        The expiry lives inside the JSON payload and may carry any offset, so
        it is compared as a parsed datetime rather than as text.  Returns the
        deleted ids.
        """

        cutoff = now or datetime.now(timezone.utc)
        with self._lock:
            rows = self._connection.execute(
                "SELECT id, payload FROM notifications WHERE user_id = ?",
                (user_id,),
            ).fetchall()
            expired = [
                row["id"] for row in rows if _is_before(json.loads(row["payload"]).get("expires_at"), cutoff)
            ]
            self._connection.executemany(
                "DELETE FROM notifications WHERE user_id = ? AND id = ?",
                [(user_id, notification_id) for notification_id in expired],
            )
            self._connection.commit()
        return expired

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._connection.commit()

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _is_before(value: object, cutoff: datetime) -> bool:
    expires_at = parse_datetime(value)
    return expires_at is not None and expires_at < cutoff
