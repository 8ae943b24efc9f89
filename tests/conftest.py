import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from dashboard.errors import StoreError
from dashboard.models import NotificationRecord, TransactionKind, TransactionRecord
from dashboard.stores import ChannelBroker


def make_tx(id, amount, kind, occurred_on, category="Food", description=""):
    return TransactionRecord(
        id=id,
        amount=Decimal(str(amount)),
        kind=TransactionKind(kind),
        category=category,
        occurred_on=occurred_on,
        description=description or None,
    )


def make_notification(id, read=False, minutes_ago=0):
    created_at = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return NotificationRecord(id=id, created_at=created_at, read=read, payload={"title": f"Notification {id}"})


class FakeNotificationStore:
    """In-memory notification store that records persistence calls.

    ``gate`` holds every persistence call until it is set, ``fail_with`` makes
    them raise and ``delay`` makes them slow.
    """

    def __init__(self, records=(), broker: Optional[ChannelBroker] = None):
        self.records = list(records)
        self.broker = broker or ChannelBroker()
        self.calls = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.delay = 0.0
        self.channel_error: Optional[Exception] = None

    async def fetch_recent(self, limit):
        return list(self.records[:limit])

    async def fetch_unread_count(self):
        return sum(1 for record in self.records if not record.read)

    async def persist_read(self, notification_id):
        await self._persist("read", notification_id)

    async def persist_read_all(self):
        await self._persist("read_all")

    async def persist_delete(self, notification_id):
        await self._persist("delete", notification_id)

    async def open_channel(self, user_id):
        if self.channel_error is not None:
            raise self.channel_error
        return self.broker.subscribe(user_id)

    async def _persist(self, name, *args):
        self.calls.append((name,) + args)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with


class FakeTransactionStore:
    def __init__(self, records=()):
        self.records = list(records)
        self.calls = []
        self.gates: list[asyncio.Event] = []
        self.fail_with: Optional[Exception] = None

    async def fetch_transactions(self, user_id, since, limit):
        self.calls.append((user_id, since, limit))
        call_index = len(self.calls) - 1
        if call_index < len(self.gates):
            await self.gates[call_index].wait()
        if self.fail_with is not None:
            raise self.fail_with
        return [record for record in self.records if record.occurred_on >= since][:limit]


async def settle(hub, rounds=5):
    """Let the push pump forward pending messages, then wait for the hub."""

    for _ in range(rounds):
        await asyncio.sleep(0)
    await hub.drain()


@pytest.fixture
def sample_transactions():
    # newest first, as the store returns them
    return [
        make_tx("t3", "10", "expense", date(2025, 2, 3)),
        make_tx("t2", "40", "expense", date(2025, 1, 20)),
        make_tx("t1", "100", "income", date(2025, 1, 15), category="Salary"),
    ]


@pytest.fixture
def store_error():
    return StoreError("backend unavailable")
