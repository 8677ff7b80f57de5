"""Subscription sync pipeline stages."""

from __future__ import annotations

from .associations import AssociationOutcome, AssociationResolver
from .categorize import (
    ActivitySplit,
    Categorization,
    ExistenceSnapshot,
    build_deactivation_map,
    categorize_by_existence,
    dedupe_by_business_id,
    detect_deactivations,
    split_by_activity,
)
from .engine import SyncEngine, build_client, build_engine_from_app, build_token_store
from .executor import BatchExecutor, BatchResult, ReadPhaseError, SyncSettings
from .planner import Batch, DeactivationBatch, plan_batches, plan_deactivation_batches
from .stats import SyncStats, SyncSummary

__all__ = [
    "ActivitySplit",
    "AssociationOutcome",
    "AssociationResolver",
    "Batch",
    "BatchExecutor",
    "BatchResult",
    "Categorization",
    "DeactivationBatch",
    "ExistenceSnapshot",
    "ReadPhaseError",
    "SyncEngine",
    "SyncSettings",
    "SyncStats",
    "SyncSummary",
    "build_client",
    "build_deactivation_map",
    "build_engine_from_app",
    "build_token_store",
    "categorize_by_existence",
    "dedupe_by_business_id",
    "detect_deactivations",
    "plan_batches",
    "plan_deactivation_batches",
    "split_by_activity",
]
