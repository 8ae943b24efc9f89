"""Error taxonomy shared by the aggregation and notification components."""
from __future__ import annotations


class DashboardError(Exception):
    """Base class for every error raised by the dashboard core."""


class StoreError(DashboardError):
    """A backing store call failed (network, SQL or HTTP error)."""


class DataUnavailable(DashboardError):
    """The upstream transaction fetch failed, so no summary can be produced."""


class StaleRequest(DashboardError):
    """A fetch completed for a window epoch that has since been superseded."""

    def __init__(self, epoch: int, current_epoch: int) -> None:
        super().__init__(f"result for epoch {epoch} discarded, current epoch is {current_epoch}")
        self.epoch = epoch
        self.current_epoch = current_epoch


class PersistenceFailure(DashboardError):
    """A notification mutation could not be persisted and was rolled back."""


class SubscriptionError(DashboardError):
    """The push channel failed or disconnected."""


class ValidationError(DashboardError):
    """An externally supplied record is malformed."""


__all__ = [
    "DashboardError",
    "StoreError",
    "DataUnavailable",
    "StaleRequest",
    "PersistenceFailure",
    "SubscriptionError",
    "ValidationError",
]
