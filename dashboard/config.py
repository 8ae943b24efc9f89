"""Application configuration utilities for the finance_dash core.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.  Everything a
dashboard session needs to know about limits and timeouts lives on
:class:`AppConfig`.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load any variables defined in a local .env file. The call is idempotent, so
# importing it at module import time keeps the API ergonomic.
load_dotenv()


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        data_file: Path to a CSV or Excel export used to seed transactions.
        database_file: Path to the SQLite database owned by the process.
        user_id: Identifier of the user whose session the process serves.
        transaction_fetch_limit: Maximum number of transactions fetched for a
            single summary. Older rows beyond the cap are dropped by the store,
            so summaries over long windows may be incomplete.
        notification_limit: Number of notifications loaded on session start.
        persist_timeout_seconds: Upper bound for a single notification
            persistence call before it is treated as failed.
        poll_interval_seconds: Interval used by polling push channels.
        log_level: Name of the root logging level.
        hosted_backend_url: Optional base URL of a hosted PostgREST backend.
            When unset the local SQLite store is used.
        hosted_backend_key: API key sent to the hosted backend.
    """

    project_root: Path
    data_file: Path
    database_file: Path
    user_id: str
    transaction_fetch_limit: int
    notification_limit: int
    persist_timeout_seconds: float
    poll_interval_seconds: float
    log_level: str
    hosted_backend_url: Optional[str]
    hosted_backend_key: Optional[str]

    @property
    def uses_hosted_backend(self) -> bool:
        return bool(self.hosted_backend_url)


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.
    """

    project_root = Path(__file__).resolve().parent.parent
    data_file = Path(
        getenv_with_default(
            "FINANCE_DASH_DATA_FILE",
            project_root / "data" / "transactions.csv",
        )
    )
    database_file = Path(
        getenv_with_default(
            "FINANCE_DASH_DB_FILE",
            project_root / "finance_dash.db",
        )
    )

    # Ensure the directories exist so later code can safely create files.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        data_file=data_file,
        database_file=database_file,
        user_id=getenv_with_default("FINANCE_DASH_USER_ID", "local-user"),
        transaction_fetch_limit=int(getenv_with_default("FINANCE_DASH_FETCH_LIMIT", "100")),
        notification_limit=int(getenv_with_default("FINANCE_DASH_NOTIFICATION_LIMIT", "50")),
        persist_timeout_seconds=float(getenv_with_default("FINANCE_DASH_PERSIST_TIMEOUT", "5.0")),
        poll_interval_seconds=float(getenv_with_default("FINANCE_DASH_POLL_INTERVAL", "10.0")),
        log_level=getenv_with_default("FINANCE_DASH_LOG_LEVEL", "INFO").upper(),
        hosted_backend_url=getenv_with_default("HOSTED_BACKEND_URL"),
        hosted_backend_key=getenv_with_default("HOSTED_BACKEND_KEY"),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return a stripped environment variable, or ``default`` when unset.

    Blank values (``FINANCE_DASH_FETCH_LIMIT=`` in a ``.env`` file) count as
    unset. Paths are converted to strings.
    """

    from os import getenv

    value = (getenv(name) or "").strip()
    if value:
        return value
    if default is None:
        return None
    return str(default)
