"""Prometheus metrics helpers for the subscription sync."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_sync_batch_counter = Counter(
    "subsync_batches_total",
    "Number of sync batches processed by operation and status.",
    ["operation", "status"],
)
_sync_batch_duration = Histogram(
    "subsync_batch_duration_seconds",
    "Duration of sync batch processing in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
_sync_records_written = Counter(
    "subsync_records_written_total",
    "HubSpot records written by entity and action.",
    ["entity", "action"],
)
_sync_associations = Counter(
    "subsync_associations_total",
    "Contact/Account association attempts by outcome.",
    ["outcome"],
)
_hubspot_token_refreshes = Counter(
    "subsync_hubspot_token_refresh_total",
    "HubSpot access token refresh attempts by outcome.",
    ["outcome"],
)
_sync_rows_skipped = Counter(
    "subsync_rows_skipped_total",
    "Input rows dropped by validation, by rule code.",
    ["rule"],
)


def record_sync_batch(
    *,
    operation: str,
    status: Literal["success", "failure"],
    duration_seconds: float,
) -> None:
    """Capture metrics for a processed batch."""

    _sync_batch_counter.labels(operation=operation, status=status).inc()
    _sync_batch_duration.observe(duration_seconds)


def record_records_written(
    *,
    entity: Literal["account", "contact"],
    action: Literal["created", "updated"],
    count: int,
) -> None:
    if count <= 0:
        return
    _sync_records_written.labels(entity=entity, action=action).inc(count)


def record_association(outcome: Literal["created", "skipped", "failed"], count: int = 1) -> None:
    if count <= 0:
        return
    _sync_associations.labels(outcome=outcome).inc(count)


def record_token_refresh(outcome: Literal["success", "failure", "reused"]) -> None:
    """Increment the HubSpot token refresh counter."""

    _hubspot_token_refreshes.labels(outcome=outcome).inc()


def record_rows_skipped(rule: str, count: int) -> None:
    if count <= 0:
        return
    _sync_rows_skipped.labels(rule=rule).inc(count)
