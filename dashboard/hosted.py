"""Client for the hosted relational backend (PostgREST-style HTTP API).

:class:`HostedStore` implements both store protocols on top of ``requests``.
Every call carries an explicit timeout and any transport or HTTP failure is
re-raised as :class:`~dashboard.errors.StoreError`; retries are left to the
caller.  The hosted backend offers no push transport we can use from here, so
:meth:`HostedStore.open_channel` polls for notifications newer than the most
recent one it has seen.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Optional

import requests

from .config import AppConfig
from .errors import StoreError
from .models import NotificationRecord, TransactionRecord
from .parsing import notification_from_row, parse_datetime, records_from_rows, transaction_from_row
from .stores import NotificationChannel

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
TRANSACTION_COLUMNS = "id,amount,type,date,description,categories:category_id(name)"


class HostedStore:
    """Transaction and notification store for one user of the hosted backend."""

    def __init__(self, config: AppConfig, user_id: str, session: Optional[requests.Session] = None) -> None:
        if not config.hosted_backend_url:
            raise ValueError("HOSTED_BACKEND_URL is not configured")
        self._config = config
        self._user_id = user_id
        self._base_url = config.hosted_backend_url.rstrip("/") + "/rest/v1"
        self._session = session or requests.Session()
        self._session.headers.update(self._auth_headers())

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    async def fetch_transactions(self, user_id: str, since: date, limit: int) -> list[TransactionRecord]:
        params = {
            "select": TRANSACTION_COLUMNS,
            "user_id": f"eq.{user_id}",
            "date": f"gte.{since.isoformat()}",
            "order": "date.desc",
            "limit": str(limit),
        }
        rows = await asyncio.to_thread(self._request, "GET", "transactions", params)
        return records_from_rows(rows, transaction_from_row)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    async def fetch_recent(self, limit: int) -> list[NotificationRecord]:
        params = {
            "select": "*",
            "user_id": f"eq.{self._user_id}",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        rows = await asyncio.to_thread(self._request, "GET", "notifications", params)
        return records_from_rows(rows, notification_from_row)

    async def fetch_unread_count(self) -> int:
        return await asyncio.to_thread(self._count_unread)

    async def persist_read(self, notification_id: str) -> None:
        params = {"id": f"eq.{notification_id}", "user_id": f"eq.{self._user_id}"}
        await asyncio.to_thread(self._request, "PATCH", "notifications", params, {"is_read": True})

    async def persist_read_all(self) -> None:
        params = {"user_id": f"eq.{self._user_id}", "is_read": "eq.false"}
        await asyncio.to_thread(self._request, "PATCH", "notifications", params, {"is_read": True})

    async def persist_delete(self, notification_id: str) -> None:
        params = {"id": f"eq.{notification_id}", "user_id": f"eq.{self._user_id}"}
        await asyncio.to_thread(self._request, "DELETE", "notifications", params)

    async def open_channel(self, user_id: str) -> NotificationChannel:
        poller: Optional[asyncio.Task] = None

        def stop(_: NotificationChannel) -> None:
            if poller is not None:
                poller.cancel()

        channel = NotificationChannel(on_unsubscribe=stop)
        poller = asyncio.get_running_loop().create_task(self._poll(user_id, channel), name="hosted-notification-poll")
        return channel

    async def _poll(self, user_id: str, channel: NotificationChannel) -> None:
        primed = False
        last_seen: Optional[datetime] = None
        while not channel.closed:
            params = {"select": "*", "user_id": f"eq.{user_id}"}
            if not primed:
                # The first poll only establishes the high-water mark; the
                # snapshot itself is delivered through fetch_recent.
                params.update({"order": "created_at.desc", "limit": "1"})
            else:
                params["order"] = "created_at.asc"
                if last_seen is not None:
                    # Inclusive so rows sharing the mark are not lost; the hub
                    # drops the ones it has already seen.
                    params["created_at"] = f"gte.{last_seen.isoformat()}"
            try:
                rows = await asyncio.to_thread(self._request, "GET", "notifications", params)
                newest = _latest_created_at(rows, last_seen)
                if primed:
                    for row in rows:
                        channel.deliver(row)
                last_seen = newest
            except Exception as exc:
                logger.warning("Notification polling stopped: %s", exc)
                channel.fail(exc)
                return
            primed = True
            await asyncio.sleep(self._config.poll_interval_seconds)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _auth_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._config.hosted_backend_key:
            headers["apikey"] = self._config.hosted_backend_key
            headers["Authorization"] = f"Bearer {self._config.hosted_backend_key}"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str],
        body: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        url = f"{self._base_url}/{table}"
        try:
            response = self._session.request(method, url, params=params, json=body, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc

        if method != "GET" or not response.content:
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreError(f"{method} {table} returned invalid JSON") from exc
        if not isinstance(payload, list):
            raise StoreError(f"{method} {table} returned {type(payload).__name__}, expected a list")
        return payload

    def _count_unread(self) -> int:
        url = f"{self._base_url}/notifications"
        params = {"select": "id", "user_id": f"eq.{self._user_id}", "is_read": "eq.false"}
        try:
            response = self._session.head(url, params=params, headers={"Prefer": "count=exact"}, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"unread count failed: {exc}") from exc

        # Content-Range looks like "0-24/57" or "*/0".
        content_range = response.headers.get("Content-Range", "")
        _, _, total = content_range.partition("/")
        try:
            return int(total)
        except ValueError:
            logger.warning("Unexpected Content-Range header %r", content_range)
            return 0


def _latest_created_at(rows: list[dict[str, Any]], current: Optional[datetime]) -> Optional[datetime]:
    latest = current
    for row in rows:
        created_at = parse_datetime(row.get("created_at"))
        if created_at is not None and (latest is None or created_at > latest):
            latest = created_at
    return latest
