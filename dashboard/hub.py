"""Live notification inbox for a single user session.

:class:`NotificationHub` is the only writer of the notification list and the
unread counter.  Local intents (read, read-all, delete, load) and push
deliveries are placed on one :class:`asyncio.Queue` and applied by a single
worker task in arrival order, so a push that arrives while a persistence call
is outstanding simply waits its turn.

Local intents are optimistic: the in-memory state changes first, then the
store call runs with a bounded timeout.  When persistence fails the previous
state is restored and :class:`~dashboard.errors.PersistenceFailure` is raised
to the caller.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional

from .errors import PersistenceFailure, StoreError, SubscriptionError, ValidationError
from .models import NotificationRecord, NotificationState
from .parsing import notification_from_row
from .stores import NotificationChannel, NotificationStore, PushMessage

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
DEFAULT_PERSIST_TIMEOUT = 5.0


@dataclass(frozen=True)
class _Restore:
    items: tuple[NotificationRecord, ...]
    unread_count: int


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a persisted mutation together with the state to restore."""

    ok: bool
    restore: _Restore
    error: Optional[PersistenceFailure] = None


@dataclass
class _Intent:
    action: str
    argument: Any = None
    future: Optional[asyncio.Future] = field(default=None, repr=False)


class NotificationHub:
    """Owns the ordered notification list and unread counter for one session."""

    def __init__(
        self,
        store: NotificationStore,
        user_id: str,
        *,
        limit: int = DEFAULT_LIMIT,
        persist_timeout: float = DEFAULT_PERSIST_TIMEOUT,
    ) -> None:
        self._store = store
        self._user_id = user_id
        self._limit = limit
        self._persist_timeout = persist_timeout

        self._items: list[NotificationRecord] = []
        self._unread_count = 0
        self._seen_ids: set[str] = set()
        self._deleted_ids: set[str] = set()
        self._degraded = False

        self._queue: asyncio.Queue[_Intent] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._current: Optional[_Intent] = None
        self._channel: Optional[NotificationChannel] = None
        self._pump: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> NotificationState:
        return NotificationState(
            items=tuple(self._items),
            unread_count=self._unread_count,
            degraded=self._degraded,
        )

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def degraded(self) -> bool:
        return self._degraded

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def __aenter__(self) -> "NotificationHub":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Subscribe to the push channel and load the initial snapshot.

        The channel is opened before the snapshot is fetched; messages that
        arrive in between are buffered and deduplicated against the snapshot.
        """

        await self._open_channel()
        try:
            await self.load(self._limit)
        except BaseException:
            await self.close()
            raise
        self._start_pump()

    async def reopen_channel(self) -> None:
        """Replace a failed push channel and leave degraded mode."""

        self._release_channel()
        await self._open_channel()
        self._start_pump()

    async def close(self) -> None:
        """Release the channel and stop the worker. Safe to call repeatedly."""

        self._release_channel()

        in_flight = self._current
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if in_flight is not None and in_flight.future is not None:
            in_flight.future.cancel()
        while not self._queue.empty():
            intent = self._queue.get_nowait()
            if intent.future is not None:
                intent.future.cancel()
            self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every intent queued so far has been applied."""

        self._ensure_worker()
        await self._queue.join()

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------
    async def load(self, limit: Optional[int] = None) -> None:
        await self._submit("load", self._limit if limit is None else limit)

    async def mark_as_read(self, notification_id: str) -> None:
        await self._submit("read", notification_id)

    async def mark_all_as_read(self) -> None:
        await self._submit("read_all")

    async def delete(self, notification_id: str) -> None:
        await self._submit("delete", notification_id)

    async def receive(self, message: PushMessage) -> None:
        await self._submit("receive", message)

    def _submit(self, action: str, argument: Any = None) -> asyncio.Future:
        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Intent(action, argument, future))
        return future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="notification-hub")

    async def _run(self) -> None:
        handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "load": self._apply_load,
            "read": self._apply_read,
            "read_all": self._apply_read_all,
            "delete": self._apply_delete,
            "receive": self._apply_receive,
        }
        while True:
            intent = await self._queue.get()
            self._current = intent
            try:
                if intent.future is not None and intent.future.cancelled():
                    continue
                await handlers[intent.action](intent.argument)
            except Exception as exc:
                if intent.future is not None and not intent.future.done():
                    intent.future.set_exception(exc)
            else:
                if intent.future is not None and not intent.future.done():
                    intent.future.set_result(None)
            finally:
                self._current = None
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Handlers (run on the worker, one at a time)
    # ------------------------------------------------------------------
    async def _apply_load(self, limit: int) -> None:
        try:
            records = await asyncio.wait_for(self._store.fetch_recent(limit), timeout=self._persist_timeout)
            server_unread = await asyncio.wait_for(self._store.fetch_unread_count(), timeout=self._persist_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(f"notification load timed out after {self._persist_timeout}s") from exc

        items = [record for record in records if record.id not in self._deleted_ids]
        self._items = items
        self._unread_count = sum(1 for record in items if not record.read)
        # Ids outside the loaded window are forgotten; deleted ids stay blocked.
        self._seen_ids = {record.id for record in items}

        if server_unread != self._unread_count:
            logger.debug(
                "Store reports %d unread notifications, %d within the loaded %d",
                server_unread,
                self._unread_count,
                limit,
            )
        logger.info("Loaded %d notifications (%d unread)", len(items), self._unread_count)

    async def _apply_read(self, notification_id: str) -> None:
        index = self._index_of(notification_id)
        if index is None or self._items[index].read:
            return

        restore = self._checkpoint()
        self._items[index] = replace(self._items[index], read=True)
        self._unread_count = max(0, self._unread_count - 1)

        result = await self._persist(restore, lambda: self._store.persist_read(notification_id), f"mark {notification_id} read")
        self._settle(result)

    async def _apply_read_all(self, _: Any = None) -> None:
        restore = self._checkpoint()
        self._items = [record if record.read else replace(record, read=True) for record in self._items]
        self._unread_count = 0

        result = await self._persist(restore, self._store.persist_read_all, "mark all read")
        self._settle(result)

    async def _apply_delete(self, notification_id: str) -> None:
        index = self._index_of(notification_id)
        if index is None:
            return

        restore = self._checkpoint()
        removed = self._items.pop(index)
        if not removed.read:
            self._unread_count = max(0, self._unread_count - 1)

        result = await self._persist(restore, lambda: self._store.persist_delete(notification_id), f"delete {notification_id}")
        self._settle(result)
        self._deleted_ids.add(notification_id)

    async def _apply_receive(self, message: PushMessage) -> None:
        try:
            record = message if isinstance(message, NotificationRecord) else notification_from_row(message)
        except ValidationError as exc:
            logger.warning("Dropping malformed pushed notification: %s", exc)
            return

        if record.id in self._seen_ids or record.id in self._deleted_ids:
            logger.debug("Ignoring already seen notification %s", record.id)
            return

        self._seen_ids.add(record.id)
        self._items.insert(0, record)
        if not record.read:
            self._unread_count += 1

    # ------------------------------------------------------------------
    # Optimistic mutation helpers
    # ------------------------------------------------------------------
    def _checkpoint(self) -> _Restore:
        return _Restore(items=tuple(self._items), unread_count=self._unread_count)

    async def _persist(self, restore: _Restore, call: Callable[[], Awaitable[None]], description: str) -> MutationResult:
        try:
            await asyncio.wait_for(call(), timeout=self._persist_timeout)
        except asyncio.TimeoutError:
            error = PersistenceFailure(f"{description}: timed out after {self._persist_timeout}s")
            return MutationResult(ok=False, restore=restore, error=error)
        except StoreError as exc:
            error = PersistenceFailure(f"{description}: {exc}")
            error.__cause__ = exc
            return MutationResult(ok=False, restore=restore, error=error)
        except Exception as exc:
            logger.exception("Unexpected error from notification store during %s", description)
            error = PersistenceFailure(f"{description}: {exc!r}")
            error.__cause__ = exc
            return MutationResult(ok=False, restore=restore, error=error)
        return MutationResult(ok=True, restore=restore)

    def _settle(self, result: MutationResult) -> None:
        if result.ok:
            return
        self._items = list(result.restore.items)
        self._unread_count = result.restore.unread_count
        logger.warning("Rolled back notification change: %s", result.error)
        raise result.error

    def _index_of(self, notification_id: str) -> Optional[int]:
        for index, record in enumerate(self._items):
            if record.id == notification_id:
                return index
        return None

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------
    async def _open_channel(self) -> None:
        try:
            self._channel = await self._store.open_channel(self._user_id)
        except (StoreError, SubscriptionError) as exc:
            self._enter_degraded(exc)
            return
        self._degraded = False

    def _start_pump(self) -> None:
        if self._channel is None or self._channel.closed:
            return
        self._pump = asyncio.get_running_loop().create_task(self._consume(self._channel), name="notification-push")

    async def _consume(self, channel: NotificationChannel) -> None:
        try:
            async for message in channel:
                self._ensure_worker()
                self._queue.put_nowait(_Intent("receive", message))
        except SubscriptionError as exc:
            channel.unsubscribe()
            if channel is self._channel:
                self._enter_degraded(exc)

    def _enter_degraded(self, exc: BaseException) -> None:
        self._degraded = True
        logger.warning("Push channel unavailable, continuing in pull-only mode: %s", exc)

    def _release_channel(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None
