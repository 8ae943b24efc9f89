"""High-level services orchestrating a dashboard session."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from .aggregator import aggregate
from .config import AppConfig
from .database import SQLiteRepository
from .errors import DataUnavailable, StaleRequest, StoreError
from .hosted import HostedStore
from .hub import NotificationHub
from .importers import TransactionFileImporter
from .models import AggregationWindow, SummaryResult
from .stores import ChannelBroker, LocalNotificationStore, LocalTransactionStore, NotificationStore, TransactionStore
from .windows import DEFAULT_RANGE, window_for_range

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Everything scoped to one signed-in user.

    Passed explicitly to the session services instead of living in a global
    preference store.  ``default_range`` is the window preset used when the
    caller does not name one.
    """

    user_id: str
    config: AppConfig
    default_range: str = DEFAULT_RANGE


class SummaryService:
    """Fetch-then-aggregate flow with "latest request wins" semantics.

    Each :meth:`refresh` call takes a new epoch before it suspends on the
    store.  When the fetch completes under an older epoch the result is
    discarded and ``None`` is returned; it never replaces :attr:`latest`.
    """

    def __init__(self, store: TransactionStore, user_id: str, fetch_limit: int) -> None:
        self._store = store
        self._user_id = user_id
        self._fetch_limit = fetch_limit
        self._epoch = 0
        self.latest: Optional[SummaryResult] = None

    @property
    def epoch(self) -> int:
        return self._epoch

    async def refresh(self, window: AggregationWindow) -> Optional[SummaryResult]:
        """Summarise ``window``.

        Raises:
            DataUnavailable: If the transaction store failed for the current
                epoch. Failures of superseded requests are discarded.
        """

        self._epoch += 1
        epoch = self._epoch

        try:
            records = await self._store.fetch_transactions(self._user_id, window.start, self._fetch_limit)
        except StoreError as exc:
            if epoch != self._epoch:
                logger.debug("Ignoring failure of superseded summary request %d: %s", epoch, exc)
                return None
            raise DataUnavailable(f"transactions unavailable for {window.start}: {exc}") from exc

        try:
            self._ensure_current(epoch)
        except StaleRequest as exc:
            logger.debug("%s", exc)
            return None

        truncated = len(records) >= self._fetch_limit
        if truncated:
            logger.info("Summary from %s hit the %d transaction cap; older rows are excluded", window.start, self._fetch_limit)

        in_window = [record for record in records if window.contains(record.occurred_on)]
        summary = aggregate(in_window, window, truncated=truncated)
        self.latest = summary
        return summary

    def _ensure_current(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise StaleRequest(epoch, self._epoch)


class DashboardSession:
    """Bundles the summary service and the notification hub for one user.

    Use as an async context manager: entering loads notifications and opens
    the push channel, leaving always releases the channel.
    """

    def __init__(
        self,
        context: SessionContext,
        transaction_store: TransactionStore,
        notification_store: NotificationStore,
    ) -> None:
        config = context.config
        self.context = context
        self.summaries = SummaryService(transaction_store, context.user_id, config.transaction_fetch_limit)
        self.notifications = NotificationHub(
            notification_store,
            context.user_id,
            limit=config.notification_limit,
            persist_timeout=config.persist_timeout_seconds,
        )

    async def __aenter__(self) -> "DashboardSession":
        await self.notifications.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.notifications.close()

    async def summary_for_range(self, range_name: Optional[str] = None, today: Optional[date] = None) -> Optional[SummaryResult]:
        window = window_for_range(range_name or self.context.default_range, today)
        return await self.summaries.refresh(window)


def build_stores(
    config: AppConfig,
    user_id: str,
    repository: SQLiteRepository,
    broker: ChannelBroker,
) -> tuple[TransactionStore, NotificationStore]:
    """Return the hosted stores when a backend URL is configured, else local ones."""

    if config.uses_hosted_backend:
        hosted = HostedStore(config, user_id)
        return hosted, hosted
    return LocalTransactionStore(repository), LocalNotificationStore(repository, user_id, broker)


def import_transactions(repository: SQLiteRepository, user_id: str, path: Path | str, sheet_name: Optional[str] = None) -> int:
    """Import a CSV/Excel export into the local store. Returns rows written."""

    importer = TransactionFileImporter(path)
    return repository.upsert_transactions(user_id, importer.load(sheet_name))
