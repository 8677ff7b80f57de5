"""Sync adapter interfaces and concrete implementations."""

from __future__ import annotations

from .csv_subscriptions import (
    CSVAdapterError,
    CSVHeaderError,
    SubscriptionCSVAdapter,
    SubscriptionCSVRow,
    SubscriptionCSVStatistics,
)

__all__ = [
    "CSVAdapterError",
    "CSVHeaderError",
    "SubscriptionCSVAdapter",
    "SubscriptionCSVRow",
    "SubscriptionCSVStatistics",
]
