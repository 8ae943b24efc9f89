import asyncio
import json
from dataclasses import replace
from datetime import date

import pytest
import requests

from dashboard.config import load_config
from dashboard.errors import StoreError, SubscriptionError
from dashboard.hosted import HostedStore
from dashboard.models import TransactionKind

USER = "user-1"


class FakeResponse:
    def __init__(self, payload=None, status_code=200, headers=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.content = b"" if payload is None else json.dumps(payload).encode()

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, responses=()):
        self.headers = {}
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.requests.append((method, url, dict(params or {}), json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def head(self, url, params=None, headers=None, timeout=None):
        self.requests.append(("HEAD", url, dict(params or {}), headers))
        return self.responses.pop(0)

    def close(self):
        pass


@pytest.fixture
def config(monkeypatch, tmp_path):
    monkeypatch.setenv("FINANCE_DASH_DB_FILE", str(tmp_path / "hosted.db"))
    return replace(
        load_config(),
        hosted_backend_url="https://db.example.test/",
        hosted_backend_key="secret",
        poll_interval_seconds=0.01,
    )


def test_requires_backend_url(config):
    with pytest.raises(ValueError):
        HostedStore(replace(config, hosted_backend_url=None), USER, FakeSession())


def test_sets_auth_headers(config):
    session = FakeSession()
    HostedStore(config, USER, session)

    assert session.headers["apikey"] == "secret"
    assert session.headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_fetch_transactions_builds_query_and_parses_rows(config):
    session = FakeSession([FakeResponse([
        {"id": "t1", "amount": 40, "type": "expense", "date": "2025-01-20", "categories": {"name": "Food"}},
        {"id": "t2", "amount": "oops", "type": "expense", "date": "2025-01-19"},
    ])])
    store = HostedStore(config, USER, session)

    records = await store.fetch_transactions(USER, date(2025, 1, 1), 100)

    assert [(r.id, r.kind, r.category) for r in records] == [("t1", TransactionKind.EXPENSE, "Food")]
    method, url, params, _ = session.requests[0]
    assert (method, url) == ("GET", "https://db.example.test/rest/v1/transactions")
    assert params["user_id"] == "eq.user-1"
    assert params["date"] == "gte.2025-01-01"
    assert params["order"] == "date.desc"
    assert params["limit"] == "100"


@pytest.mark.asyncio
async def test_http_errors_become_store_errors(config):
    store = HostedStore(config, USER, FakeSession([FakeResponse([], status_code=500)]))

    with pytest.raises(StoreError):
        await store.fetch_transactions(USER, date(2025, 1, 1), 100)


@pytest.mark.asyncio
async def test_connection_errors_become_store_errors(config):
    store = HostedStore(config, USER, FakeSession([requests.ConnectionError("refused")]))

    with pytest.raises(StoreError, match="refused"):
        await store.persist_read("n1")


@pytest.mark.asyncio
async def test_notification_mutations(config):
    session = FakeSession([FakeResponse(), FakeResponse(), FakeResponse()])
    store = HostedStore(config, USER, session)

    await store.persist_read("n1")
    await store.persist_read_all()
    await store.persist_delete("n2")

    assert [(m, p, body) for m, _, p, body in session.requests] == [
        ("PATCH", {"id": "eq.n1", "user_id": "eq.user-1"}, {"is_read": True}),
        ("PATCH", {"user_id": "eq.user-1", "is_read": "eq.false"}, {"is_read": True}),
        ("DELETE", {"id": "eq.n2", "user_id": "eq.user-1"}, None),
    ]


@pytest.mark.asyncio
async def test_fetch_unread_count_reads_content_range(config):
    session = FakeSession([FakeResponse(headers={"Content-Range": "0-24/57"})])
    store = HostedStore(config, USER, session)

    assert await store.fetch_unread_count() == 57
    assert session.requests[0][3] == {"Prefer": "count=exact"}


@pytest.mark.asyncio
async def test_fetch_recent_parses_notifications(config):
    session = FakeSession([FakeResponse([
        {"id": "n1", "created_at": "2025-03-01T10:00:00Z", "is_read": False, "title": "Hello", "priority": "high"},
    ])])
    store = HostedStore(config, USER, session)

    records = await store.fetch_recent(50)

    assert [(r.id, r.read, r.payload["title"]) for r in records] == [("n1", False, "Hello")]
    assert session.requests[0][2]["order"] == "created_at.desc"


@pytest.mark.asyncio
async def test_polling_channel_delivers_rows_from_high_water_mark(config):
    session = FakeSession([
        FakeResponse([{"id": "n1", "created_at": "2025-03-01T10:00:00Z"}]),
        FakeResponse([{"id": "n2", "created_at": "2025-03-01T10:05:00Z"}]),
    ] + [FakeResponse([]) for _ in range(50)])
    store = HostedStore(config, USER, session)

    channel = await store.open_channel(USER)
    message = await asyncio.wait_for(channel.__anext__(), timeout=2)
    channel.unsubscribe()

    assert message["id"] == "n2"
    assert session.requests[1][2]["created_at"] == "gte.2025-03-01T10:00:00+00:00"


@pytest.mark.asyncio
async def test_polling_channel_failure_surfaces_subscription_error(config):
    session = FakeSession([requests.ConnectionError("offline")])
    store = HostedStore(config, USER, session)

    channel = await store.open_channel(USER)

    with pytest.raises(SubscriptionError):
        await asyncio.wait_for(channel.__anext__(), timeout=2)
    channel.unsubscribe()


@pytest.mark.asyncio
async def test_polling_channel_fails_on_unexpected_rows(config):
    session = FakeSession([FakeResponse([]), FakeResponse(["not a row"])])
    store = HostedStore(config, USER, session)

    channel = await store.open_channel(USER)

    with pytest.raises(SubscriptionError):
        await asyncio.wait_for(channel.__anext__(), timeout=2)
    channel.unsubscribe()


@pytest.mark.asyncio
async def test_polling_channel_without_history_polls_unfiltered(config):
    session = FakeSession([
        FakeResponse([]),
        FakeResponse([{"id": "n1", "created_at": "2025-03-01T10:00:00Z"}]),
    ] + [FakeResponse([]) for _ in range(50)])
    store = HostedStore(config, USER, session)

    channel = await store.open_channel(USER)
    message = await asyncio.wait_for(channel.__anext__(), timeout=2)
    channel.unsubscribe()

    assert message["id"] == "n1"
    assert "created_at" not in session.requests[1][2]
    assert session.requests[1][2]["order"] == "created_at.asc"
