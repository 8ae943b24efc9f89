from dataclasses import replace
from datetime import date

import pytest

from conftest import make_notification, make_tx
from dashboard.database import SQLiteRepository
from dashboard.errors import StoreError, SubscriptionError
from dashboard.stores import ChannelBroker, LocalNotificationStore, LocalTransactionStore, NotificationChannel

USER = "user-1"


@pytest.fixture
def repository(tmp_path):
    repo = SQLiteRepository(tmp_path / "stores.db")
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.mark.asyncio
async def test_local_transaction_store_returns_records(repository):
    repository.upsert_transactions(USER, [
        make_tx("t1", "10.10", "expense", date(2025, 1, 5), category="Food"),
        make_tx("t2", "99", "income", date(2025, 1, 6), category="Salary"),
    ])
    store = LocalTransactionStore(repository)

    records = await store.fetch_transactions(USER, date(2025, 1, 1), 10)

    assert [r.id for r in records] == ["t2", "t1"]
    assert records[1] == make_tx("t1", "10.10", "expense", date(2025, 1, 5), category="Food")


@pytest.mark.asyncio
async def test_local_transaction_store_wraps_sqlite_errors(tmp_path):
    repo = SQLiteRepository(tmp_path / "empty.db")
    store = LocalTransactionStore(repo)

    with pytest.raises(StoreError):
        await store.fetch_transactions(USER, date(2025, 1, 1), 10)
    repo.close()


@pytest.mark.asyncio
async def test_local_notification_store_persists_mutations(repository):
    store = LocalNotificationStore(repository, USER, ChannelBroker())
    for record in (make_notification("n1", minutes_ago=2), make_notification("n2", minutes_ago=1)):
        repository.insert_notification(USER, record)

    await store.persist_read("n1")
    assert await store.fetch_unread_count() == 1

    await store.persist_delete("n2")
    recent = await store.fetch_recent(10)
    assert [(r.id, r.read) for r in recent] == [("n1", True)]

    repository.insert_notification(USER, make_notification("n3"))
    await store.persist_read_all()
    assert await store.fetch_unread_count() == 0


@pytest.mark.asyncio
async def test_create_pushes_to_open_channels(repository):
    broker = ChannelBroker()
    store = LocalNotificationStore(repository, USER, broker)
    channel = await store.open_channel(USER)

    record = make_notification("n1")
    await store.create(record)

    assert await channel.__anext__() == record
    assert [r.id for r in await store.fetch_recent(5)] == ["n1"]
    channel.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_ends_iteration():
    broker = ChannelBroker()
    channel = broker.subscribe(USER)
    channel.deliver({"id": "n1"})
    channel.unsubscribe()
    channel.unsubscribe()

    received = [message async for message in channel]

    assert received == [{"id": "n1"}]
    assert broker.subscriber_count(USER) == 0
    assert broker.publish(USER, {"id": "n2"}) == 0


@pytest.mark.asyncio
async def test_channel_failure_raises_subscription_error():
    channel = NotificationChannel()
    channel.fail(ConnectionResetError("socket closed"))

    with pytest.raises(SubscriptionError, match="socket closed"):
        await channel.__anext__()


@pytest.mark.asyncio
async def test_cleanup_expired_removes_only_expired(repository):
    store = LocalNotificationStore(repository, USER, ChannelBroker())
    await store.create(replace(make_notification("gone"), payload={"expires_at": "2001-01-01T00:00:00Z"}))
    await store.create(make_notification("kept"))

    assert await store.cleanup_expired() == ["gone"]
    assert [r.id for r in await store.fetch_recent(10)] == ["kept"]
