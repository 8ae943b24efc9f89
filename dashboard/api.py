"""FastAPI application exposing the dashboard summary and notification inbox."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .aggregator import summary_metrics
from .config import load_config
from .database import SQLiteRepository
from .errors import DataUnavailable, PersistenceFailure, StoreError
from .hosted import HostedStore
from .models import (
    CategoryTotal,
    NotificationPriority,
    NotificationRecord,
    NotificationState,
    NotificationType,
    SummaryResult,
    TransactionRecord,
)
from .notifications import budget_warning, new_notification
from .services import DashboardSession, SessionContext, build_stores, import_transactions
from .stores import ChannelBroker, LocalNotificationStore
from .windows import DEFAULT_RANGE, RANGE_NAMES

logger = logging.getLogger(__name__)

RANGE_PATTERN = "^(" + "|".join(RANGE_NAMES) + ")$"
DEFAULT_RANGE_SETTING = "default_range"


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Open one dashboard session for the configured user and close it on shutdown."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    broker = ChannelBroker()
    transaction_store, notification_store = build_stores(config, config.user_id, repository, broker)
    context = SessionContext(
        user_id=config.user_id,
        config=config,
        default_range=repository.get_setting(DEFAULT_RANGE_SETTING, DEFAULT_RANGE),
    )

    app.state.config = config
    app.state.repository = repository
    app.state.broker = broker
    app.state.notification_store = notification_store

    try:
        async with DashboardSession(context, transaction_store, notification_store) as session:
            app.state.session = session
            yield
    finally:
        if isinstance(transaction_store, HostedStore):
            transaction_store.close()
        repository.close()


app = FastAPI(lifespan=lifespan, title="finance_dash core", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency injection ------------------------------------------------------

def get_session() -> DashboardSession:
    session: DashboardSession = app.state.session
    return session


def get_repository() -> SQLiteRepository:
    repository: SQLiteRepository = app.state.repository
    return repository


class NotificationCreate(BaseModel):
    title: str
    message: str
    type: NotificationType = NotificationType.SYSTEM_UPDATE
    priority: NotificationPriority = NotificationPriority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict)
    action_url: Optional[str] = None
    action_label: Optional[str] = None
    expires_at: Optional[datetime] = None


class BudgetWarningCreate(BaseModel):
    category_id: str
    budget_amount: Decimal = Field(gt=0)
    spent_amount: Decimal = Field(ge=0)
    expires_at: Optional[datetime] = None


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.get("/summary")
async def get_summary(
    session: Annotated[DashboardSession, Depends(get_session)],
    range_name: Annotated[Optional[str], Query(alias="range", pattern=RANGE_PATTERN)] = None,
):
    try:
        summary = await session.summary_for_range(range_name)
    except DataUnavailable as exc:
        logger.error("Summary unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Transaction data unavailable. Try again later.") from exc
    if summary is None:
        # Superseded by a newer request; that request carries the answer.
        return Response(status_code=204)
    return _summary_payload(summary)


@app.get("/transactions")
async def list_transactions(
    session: Annotated[DashboardSession, Depends(get_session)],
    range_name: Annotated[Optional[str], Query(alias="range", pattern=RANGE_PATTERN)] = None,
):
    summary = await get_summary(session, range_name)
    if isinstance(summary, Response):
        return {"transactions": [], "count": 0}
    return {"transactions": summary["recent_transactions"], "count": len(summary["recent_transactions"])}


@app.post("/import")
def import_file(
    repository: Annotated[SQLiteRepository, Depends(get_repository)],
    path: Annotated[Optional[str], Query(description="CSV or Excel file to import")] = None,
    sheet_name: Optional[str] = None,
) -> dict[str, object]:
    """Import a transaction export into the local store."""

    config = app.state.config
    source = path or str(config.data_file)
    try:
        imported = import_transactions(repository, config.user_id, source, sheet_name)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"File not found: {source}") from exc
    return {"imported": imported, "source": source}


@app.get("/notifications")
def list_notifications(session: Annotated[DashboardSession, Depends(get_session)]) -> dict[str, object]:
    return _notification_state_payload(session.notifications.state)


@app.post("/notifications", status_code=201)
async def create_notification(body: NotificationCreate) -> dict[str, object]:
    """Store a notification and push it to the open session."""

    record = new_notification(
        body.type,
        body.title,
        body.message,
        priority=body.priority,
        data=body.data,
        action_url=body.action_url,
        action_label=body.action_label,
        expires_at=body.expires_at,
    )
    await _create(record)
    return _notification_payload(record)


@app.post("/notifications/budget-warning", status_code=201)
async def create_budget_warning(body: BudgetWarningCreate) -> dict[str, object]:
    record = budget_warning(body.category_id, body.budget_amount, body.spent_amount, expires_at=body.expires_at)
    await _create(record)
    return _notification_payload(record)


@app.post("/notifications/cleanup")
async def cleanup_expired_notifications(session: Annotated[DashboardSession, Depends(get_session)]) -> dict[str, object]:
    """Delete expired notifications and reload the inbox."""

    store = _local_notification_store()
    try:
        removed = await store.cleanup_expired()
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if removed:
        await session.notifications.load()
    return {"removed": removed, **_notification_state_payload(session.notifications.state)}


@app.post("/notifications/read-all")
async def mark_all_notifications_read(session: Annotated[DashboardSession, Depends(get_session)]) -> dict[str, object]:
    await _run_intent(session.notifications.mark_all_as_read())
    return _notification_state_payload(session.notifications.state)


@app.post("/notifications/channel/reopen")
async def reopen_notification_channel(session: Annotated[DashboardSession, Depends(get_session)]) -> dict[str, object]:
    await session.notifications.reopen_channel()
    return {"degraded": session.notifications.degraded}


@app.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    session: Annotated[DashboardSession, Depends(get_session)],
) -> dict[str, object]:
    await _run_intent(session.notifications.mark_as_read(notification_id))
    return _notification_state_payload(session.notifications.state)


@app.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: str,
    session: Annotated[DashboardSession, Depends(get_session)],
) -> dict[str, object]:
    await _run_intent(session.notifications.delete(notification_id))
    return _notification_state_payload(session.notifications.state)


@app.get("/settings/default-range")
def get_default_range(session: Annotated[DashboardSession, Depends(get_session)]) -> dict[str, str]:
    return {"default_range": session.context.default_range}


@app.put("/settings/default-range")
def set_default_range(
    value: Annotated[str, Query(pattern=RANGE_PATTERN)],
    session: Annotated[DashboardSession, Depends(get_session)],
    repository: Annotated[SQLiteRepository, Depends(get_repository)],
) -> dict[str, str]:
    repository.set_setting(DEFAULT_RANGE_SETTING, value)
    session.context.default_range = value
    return {"default_range": value}


# Serialisation helpers -----------------------------------------------------


def _local_notification_store() -> LocalNotificationStore:
    store = app.state.notification_store
    if not isinstance(store, LocalNotificationStore):
        raise HTTPException(status_code=501, detail="Notifications are managed by the hosted backend.")
    return store


async def _create(record: NotificationRecord) -> None:
    try:
        await _local_notification_store().create(record)
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


async def _run_intent(intent) -> None:
    try:
        await intent
    except PersistenceFailure as exc:
        raise HTTPException(status_code=502, detail=f"Change was not saved: {exc}") from exc


def _summary_payload(summary: SummaryResult) -> dict[str, object]:
    metrics = summary_metrics(summary)
    return {
        "window": {
            "start": summary.window.start.isoformat(),
            "end": summary.window.end.isoformat() if summary.window.end else None,
        },
        "total_income": summary.total_income,
        "total_expense": summary.total_expense,
        "balance": summary.balance,
        "category_breakdown": [_category_payload(item) for item in summary.category_breakdown],
        "monthly_trend": [
            {
                "month": point.month_key,
                "name": point.label,
                "income": point.income,
                "expense": point.expense,
                "balance": point.balance,
            }
            for point in summary.monthly_trend
        ],
        "top_categories": [_category_payload(item) for item in summary.top_categories],
        "recent_transactions": [_transaction_payload(record) for record in summary.recent_transactions],
        "transaction_count": summary.transaction_count,
        "truncated": summary.truncated,
        "savings_rate": metrics.savings_rate,
        "average_monthly_income": metrics.average_monthly_income,
        "average_monthly_expense": metrics.average_monthly_expense,
    }


def _category_payload(item: CategoryTotal) -> dict[str, object]:
    return {"category": item.category, "total": item.total, "count": item.transaction_count}


def _transaction_payload(record: TransactionRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "amount": record.amount,
        "type": record.kind.value,
        "category": record.category,
        "date": record.occurred_on.isoformat(),
        "description": record.description,
    }


def _notification_payload(record: NotificationRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "created_at": record.created_at.isoformat(),
        "read": record.read,
        "type": record.type.value,
        "priority": record.priority.value,
        "payload": record.payload,
    }


def _notification_state_payload(state: NotificationState) -> dict[str, object]:
    return {
        "notifications": [_notification_payload(record) for record in state.items],
        "unread_count": state.unread_count,
        "degraded": state.degraded,
    }
