"""Store interfaces and the local SQLite-backed implementations.

The aggregation and notification components only depend on the
:class:`TransactionStore` and :class:`NotificationStore` protocols.  Push
delivery is modelled as a :class:`NotificationChannel`: an async iterator of
messages with an explicit :meth:`~NotificationChannel.unsubscribe`, so ordering
and teardown are visible to the consumer instead of hidden in callbacks.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date
from typing import Any, Callable, Mapping, Protocol, Union

from .database import SQLiteRepository
from .errors import StoreError, SubscriptionError
from .models import NotificationRecord, TransactionRecord
from .parsing import notification_from_row, records_from_rows, transaction_from_row

logger = logging.getLogger(__name__)

PushMessage = Union[NotificationRecord, Mapping[str, Any]]


class TransactionStore(Protocol):
    async def fetch_transactions(self, user_id: str, since: date, limit: int) -> list[TransactionRecord]:
        """Return at most ``limit`` records on or after ``since``, newest first."""


class NotificationStore(Protocol):
    async def fetch_recent(self, limit: int) -> list[NotificationRecord]:
        ...

    async def fetch_unread_count(self) -> int:
        ...

    async def persist_read(self, notification_id: str) -> None:
        ...

    async def persist_read_all(self) -> None:
        ...

    async def persist_delete(self, notification_id: str) -> None:
        ...

    async def open_channel(self, user_id: str) -> "NotificationChannel":
        ...


_CLOSED = object()


class NotificationChannel:
    """A single push subscription.

    Iterating yields messages in delivery order.  Iteration stops after
    :meth:`unsubscribe`; a transport failure reported through :meth:`fail`
    surfaces as :class:`SubscriptionError` on the consumer side.
    """

    def __init__(self, on_unsubscribe: Callable[["NotificationChannel"], None] | None = None) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._on_unsubscribe = on_unsubscribe
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: PushMessage) -> None:
        if not self._closed:
            self._queue.put_nowait(message)

    def fail(self, reason: BaseException | str) -> None:
        if not self._closed:
            error = reason if isinstance(reason, BaseException) else SubscriptionError(reason)
            self._queue.put_nowait(error)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_unsubscribe is not None:
            self._on_unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "NotificationChannel":
        return self

    async def __anext__(self) -> PushMessage:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, SubscriptionError):
            raise item
        if isinstance(item, BaseException):
            raise SubscriptionError(str(item)) from item
        return item  # type: ignore[return-value]


class ChannelBroker:
    """In-process fan-out of push messages to the channels of each user."""

    def __init__(self) -> None:
        self._channels: dict[str, list[NotificationChannel]] = {}

    def subscribe(self, user_id: str) -> NotificationChannel:
        channel = NotificationChannel(on_unsubscribe=lambda ch: self._remove(user_id, ch))
        self._channels.setdefault(user_id, []).append(channel)
        logger.debug("Opened push channel for user %s", user_id)
        return channel

    def publish(self, user_id: str, message: PushMessage) -> int:
        """Deliver ``message`` to every open channel of ``user_id``."""

        channels = list(self._channels.get(user_id, ()))
        for channel in channels:
            channel.deliver(message)
        return len(channels)

    def disconnect(self, user_id: str, reason: str = "channel disconnected") -> None:
        """Report a transport failure to every channel of ``user_id``."""

        for channel in list(self._channels.pop(user_id, ())):
            channel.fail(reason)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._channels.get(user_id, ()))

    def _remove(self, user_id: str, channel: NotificationChannel) -> None:
        channels = self._channels.get(user_id)
        if channels and channel in channels:
            channels.remove(channel)
            if not channels:
                del self._channels[user_id]


class LocalTransactionStore:
    """:class:`TransactionStore` backed by :class:`SQLiteRepository`."""

    def __init__(self, repository: SQLiteRepository) -> None:
        self._repository = repository

    async def fetch_transactions(self, user_id: str, since: date, limit: int) -> list[TransactionRecord]:
        try:
            rows = await asyncio.to_thread(self._repository.fetch_transactions, user_id, since, limit)
        except sqlite3.Error as exc:
            raise StoreError(f"transaction fetch failed: {exc}") from exc
        return records_from_rows(rows, transaction_from_row)


class LocalNotificationStore:
    """:class:`NotificationStore` for one user, backed by SQLite and a broker."""

    def __init__(self, repository: SQLiteRepository, user_id: str, broker: ChannelBroker) -> None:
        self._repository = repository
        self._user_id = user_id
        self._broker = broker

    async def fetch_recent(self, limit: int) -> list[NotificationRecord]:
        rows = await self._call(self._repository.fetch_notifications, self._user_id, limit)
        return records_from_rows(rows, notification_from_row)

    async def fetch_unread_count(self) -> int:
        return await self._call(self._repository.count_unread_notifications, self._user_id)

    async def persist_read(self, notification_id: str) -> None:
        await self._call(self._repository.mark_notification_read, self._user_id, notification_id)

    async def persist_read_all(self) -> None:
        await self._call(self._repository.mark_all_notifications_read, self._user_id)

    async def persist_delete(self, notification_id: str) -> None:
        await self._call(self._repository.delete_notification, self._user_id, notification_id)

    async def open_channel(self, user_id: str) -> NotificationChannel:
        return self._broker.subscribe(user_id)

    async def create(self, notification: NotificationRecord) -> NotificationRecord:
        """Persist a new notification and push it to the user's channels."""

        await self._call(self._repository.insert_notification, self._user_id, notification)
        self._broker.publish(self._user_id, notification)
        return notification

    async def cleanup_expired(self) -> list[str]:
        """Delete the user's expired notifications and return their ids."""

        return await self._call(self._repository.delete_expired_notifications, self._user_id)

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc
