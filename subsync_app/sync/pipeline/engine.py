"""
End-to-end subscription sync orchestration.

parse/validate → activity split → read phase → categorize → deactivations →
create/update batches → summary.
"""

from __future__ import annotations

import logging
import time
from typing import IO, Mapping

from subsync_app.sync.adapters.csv_subscriptions import SubscriptionCSVAdapter
from subsync_app.sync.adapters.hubspot import DEFAULT_TOKEN_FILE, HubSpotClient, HubSpotTokenStore
from subsync_app.sync.adapters.hubspot.client import HUBSPOT_API_BASE_URL
from subsync_app.sync.metrics import record_rows_skipped
from subsync_app.sync.pipeline.categorize import (
    build_deactivation_map,
    categorize_by_existence,
    dedupe_by_business_id,
    detect_deactivations,
    split_by_activity,
)
from subsync_app.sync.pipeline.executor import BatchExecutor, ReadPhaseError, SyncSettings
from subsync_app.sync.pipeline.planner import plan_batches
from subsync_app.sync.pipeline.stats import SyncStats, SyncSummary

logger = logging.getLogger(__name__)


class SyncEngine:
    """Run one subscription CSV through the HubSpot sync pipeline."""

    def __init__(
        self,
        client: HubSpotClient,
        settings: SyncSettings | None = None,
        *,
        sleep_fn=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or SyncSettings()
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)

    def run(self, source: IO[str] | str) -> SyncSummary:
        """
        Sync a subscription CSV given as an open text handle or raw CSV text.

        Raises:
            CSVHeaderError: The header row lacks ``user_id`` or ``email``.
            ReadPhaseError: Existence lookups failed; nothing was written.
        """

        stats = SyncStats()
        stats.start()

        adapter = (
            SubscriptionCSVAdapter.from_text(source) if isinstance(source, str) else SubscriptionCSVAdapter(source)
        )
        records = list(adapter.iter_validated_records())
        statistics = adapter.statistics
        stats.increment(rows_read=statistics.rows_read, rows_skipped=statistics.rows_skipped_invalid)
        for rule_code, count in statistics.rule_counts.items():
            record_rows_skipped(rule_code, count)
        self.logger.info(
            "Parsed subscription CSV",
            extra={
                "sync_rows_read": statistics.rows_read,
                "sync_rows_valid": statistics.rows_valid,
                "sync_rows_skipped": statistics.rows_skipped_invalid,
                "sync_rows_blank": statistics.rows_skipped_blank,
            },
        )

        unique = dedupe_by_business_id(records)
        if len(unique) < len(records):
            self.logger.warning(
                "Collapsed repeated business ids; the last row for each id is used",
                extra={"sync_duplicate_rows": len(records) - len(unique)},
            )
        split = split_by_activity(unique)
        executor = BatchExecutor(self.client, stats, self.settings, sleep_fn=self.sleep)

        try:
            snapshot = executor.read_existence(split.all_for_creation)
        except ReadPhaseError:
            stats.stop()
            raise

        categorization = categorize_by_existence(split.all_for_creation, snapshot)
        deactivations = detect_deactivations(build_deactivation_map(split.inactive), snapshot.active_account_ids)
        self.logger.info(
            "Categorized subscription records",
            extra={
                "sync_to_create": len(categorization.to_create),
                "sync_to_update": len(categorization.to_update),
                "sync_active": len(split.active),
                "sync_inactive": len(split.inactive),
                "sync_deactivation_candidates": len(deactivations),
            },
        )

        if deactivations:
            executor.run_deactivations(deactivations, snapshot)

        batches = plan_batches(categorization.to_create, "create", self.settings.batch_size)
        batches += plan_batches(categorization.to_update, "update", self.settings.batch_size)
        executor.run_batches(batches, snapshot)

        stats.stop()
        summary = stats.snapshot()
        self.logger.info("Subscription sync complete", extra={"sync_summary": summary.to_dict()})
        return summary


# Wiring -------------------------------------------------------------------------


def build_token_store(config: Mapping[str, object]) -> HubSpotTokenStore:
    return HubSpotTokenStore(
        token_file=str(config.get("HUBSPOT_TOKEN_FILE") or DEFAULT_TOKEN_FILE),
        client_id=config.get("HUBSPOT_CLIENT_ID"),
        client_secret=config.get("HUBSPOT_CLIENT_SECRET"),
        redirect_uri=config.get("HUBSPOT_REDIRECT_URI"),
        timeout=float(config.get("HUBSPOT_TIMEOUT_SECONDS", 30.0)),
    )


def build_client(config: Mapping[str, object], *, tokens: HubSpotTokenStore | None = None) -> HubSpotClient:
    settings = SyncSettings.from_config(config)
    association_type_id = config.get("HUBSPOT_ASSOCIATION_TYPE_ID")
    return HubSpotClient(
        tokens=tokens or build_token_store(config),
        accounts_object_type=str(config.get("HUBSPOT_ACCOUNTS_OBJECT_TYPE_ID") or "2-123456"),
        base_url=str(config.get("HUBSPOT_API_BASE_URL") or HUBSPOT_API_BASE_URL),
        timeout=float(config.get("HUBSPOT_TIMEOUT_SECONDS", 30.0)),
        lookup_chunk_size=settings.lookup_chunk_size,
        lookup_delay=settings.lookup_delay,
        association_type_id=int(association_type_id) if association_type_id else None,
    )


def build_engine_from_app(app) -> SyncEngine:
    """Construct a SyncEngine from a Flask app's configuration."""

    config = app.config
    return SyncEngine(build_client(config), SyncSettings.from_config(config), logger=logger)


__all__ = ["SyncEngine", "build_client", "build_engine_from_app", "build_token_store"]
