"""
Two-phase batch executor for the subscription sync.

The read phase resolves which Accounts and Contacts already exist remotely and
must finish before any write starts. The write phase runs planned batches on a
bounded thread pool in waves separated by a fixed cooldown; each batch writes
its Accounts and Contacts concurrently, then links them.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Sequence, Tuple

from subsync_app.sync.adapters.hubspot import HubSpotClient, RemoteRecord
from subsync_app.sync.adapters.hubspot.client import HUBSPOT_BATCH_LIMIT, HUBSPOT_SEARCH_PAGE_SIZE
from subsync_app.sync.contracts import (
    AccountPayload,
    ContactPayload,
    DeactivationCandidate,
    ValidatedRecord,
    parse_bool,
)
from subsync_app.sync.metrics import record_records_written, record_sync_batch
from subsync_app.sync.pipeline.associations import AssociationOutcome, AssociationResolver
from subsync_app.sync.pipeline.categorize import ExistenceSnapshot
from subsync_app.sync.pipeline.planner import Batch, plan_deactivation_batches
from subsync_app.sync.pipeline.stats import SyncStats


class ReadPhaseError(RuntimeError):
    """Raised when existence lookups fail; no categorization is possible without them."""


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


@dataclass(frozen=True)
class SyncSettings:
    batch_size: int = HUBSPOT_BATCH_LIMIT
    max_concurrency: int = 5
    wave_cooldown: float = 1.0
    lookup_chunk_size: int = HUBSPOT_SEARCH_PAGE_SIZE
    lookup_delay: float = 0.1

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> "SyncSettings":
        return cls(
            batch_size=_clamp(config.get("SYNC_BATCH_SIZE", HUBSPOT_BATCH_LIMIT), 1, HUBSPOT_BATCH_LIMIT),
            max_concurrency=max(1, int(config.get("SYNC_MAX_CONCURRENCY", 5))),
            wave_cooldown=max(0.0, float(config.get("SYNC_WAVE_COOLDOWN_SECONDS", 1.0))),
            lookup_chunk_size=HUBSPOT_SEARCH_PAGE_SIZE,
            lookup_delay=max(0.0, float(config.get("SYNC_LOOKUP_DELAY_SECONDS", 0.1))),
        )


@dataclass(frozen=True)
class SubWriteResult:
    created: Tuple[RemoteRecord, ...] = ()
    updated: Tuple[RemoteRecord, ...] = ()

    @property
    def records(self) -> Tuple[RemoteRecord, ...]:
        return self.created + self.updated


@dataclass(frozen=True)
class BatchResult:
    operation: str
    index: int
    success: bool
    accounts: SubWriteResult = field(default_factory=SubWriteResult)
    contacts: SubWriteResult = field(default_factory=SubWriteResult)
    associations: AssociationOutcome = field(default_factory=AssociationOutcome)
    error: str | None = None


class BatchExecutor:
    """Execute the read phase and the bounded, wave-paced write phase."""

    def __init__(
        self,
        client: HubSpotClient,
        stats: SyncStats,
        settings: SyncSettings | None = None,
        *,
        resolver: AssociationResolver | None = None,
        sleep_fn=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.stats = stats
        self.settings = settings or SyncSettings()
        self.resolver = resolver or AssociationResolver(client)
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)

    # Public API -----------------------------------------------------------------

    def read_existence(self, records: Iterable[ValidatedRecord]) -> ExistenceSnapshot:
        """
        Look up every distinct business id and email before any write starts.

        Account and Contact lookups run concurrently and are both joined here;
        any failure raises ReadPhaseError.
        """

        business_ids: list[str] = []
        emails: list[str] = []
        for record in records:
            business_ids.append(record.user_id)
            emails.append(record.email)
        business_ids = list(dict.fromkeys(value for value in business_ids if value))
        emails = list(dict.fromkeys(value for value in emails if value))

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="subsync-read") as pool:
            account_future = pool.submit(self.client.search_accounts_by_ids, business_ids)
            contact_future = pool.submit(self.client.search_contacts_by_emails, emails)
            wait([account_future, contact_future])

        try:
            account_records = account_future.result()
            contact_records = contact_future.result()
        except Exception as exc:
            self.logger.error("Existence lookup failed; aborting run", extra={"error": str(exc)})
            raise ReadPhaseError(f"Existence lookup failed: {exc}") from exc

        account_ids: dict[str, str] = {}
        active_ids: set[str] = set()
        for remote in account_records:
            business_id = remote.get("id")
            if not business_id:
                continue
            account_ids[str(business_id)] = remote.id
            if parse_bool(remote.get("active_subscription")):
                active_ids.add(str(business_id))
        contact_ids = {
            str(remote.get("email")).lower(): remote.id for remote in contact_records if remote.get("email")
        }

        snapshot = ExistenceSnapshot(
            account_ids=account_ids,
            contact_ids=contact_ids,
            active_account_ids=frozenset(active_ids),
        )
        self.logger.info(
            "Read phase complete",
            extra={
                "sync_lookup_business_ids": len(business_ids),
                "sync_lookup_emails": len(emails),
                "sync_existing_accounts": len(account_ids),
                "sync_existing_contacts": len(contact_ids),
                "sync_remote_active_accounts": len(active_ids),
            },
        )
        return snapshot

    def run_deactivations(
        self,
        candidates: Sequence[DeactivationCandidate],
        snapshot: ExistenceSnapshot,
    ) -> List[BatchResult]:
        """Flip remotely active Accounts to inactive, one bulk update per chunk."""

        results: List[BatchResult] = []
        for chunk in plan_deactivation_batches(candidates, self.settings.batch_size):
            started = time.perf_counter()
            updates = [
                (snapshot.account_ids[candidate.business_id], candidate.to_properties())
                for candidate in chunk.candidates
                if candidate.business_id in snapshot.account_ids
            ]
            try:
                result = self.client.batch_update_accounts(updates)
            except Exception as exc:
                self.stats.increment(batches_failed=1, errors=1)
                record_sync_batch(
                    operation="deactivate", status="failure", duration_seconds=time.perf_counter() - started
                )
                self.logger.error(
                    "Deactivation batch failed",
                    extra={"sync_batch": f"deactivate {chunk.index}/{chunk.total}", "error": str(exc)},
                )
                results.append(BatchResult("deactivate", chunk.index, False, error=str(exc)))
                continue
            self.stats.increment(deactivations=len(result.records), errors=result.error_count, batches_processed=1)
            record_sync_batch(operation="deactivate", status="success", duration_seconds=time.perf_counter() - started)
            self.logger.info(
                "Deactivation batch complete",
                extra={"sync_batch": f"deactivate {chunk.index}/{chunk.total}", "sync_deactivated": len(result.records)},
            )
            results.append(
                BatchResult("deactivate", chunk.index, True, accounts=SubWriteResult(updated=result.records))
            )
        return results

    def run_batches(self, batches: Sequence[Batch], snapshot: ExistenceSnapshot) -> List[BatchResult]:
        """
        Run batches in waves of at most ``max_concurrency`` with a cooldown between waves.
        """

        bound = max(1, self.settings.max_concurrency)
        waves = [batches[start : start + bound] for start in range(0, len(batches), bound)]
        results: List[BatchResult] = []
        if not waves:
            return results

        with ThreadPoolExecutor(max_workers=bound, thread_name_prefix="subsync-batch") as pool:
            for wave_number, wave in enumerate(waves, start=1):
                futures = [pool.submit(self.process_batch, batch, snapshot) for batch in wave]
                for batch, future in zip(wave, futures):
                    try:
                        results.append(future.result())
                    except Exception as exc:
                        # process_batch isolates its own failures; this guards unexpected bugs
                        self.stats.increment(batches_failed=1, errors=1)
                        self.logger.exception("Batch %s crashed", batch.label)
                        results.append(BatchResult(batch.operation, batch.index, False, error=str(exc)))
                if wave_number < len(waves) and self.settings.wave_cooldown > 0:
                    self.sleep(self.settings.wave_cooldown)
        return results

    def process_batch(self, batch: Batch, snapshot: ExistenceSnapshot) -> BatchResult:
        """Write one batch; any sub-write failure marks the batch failed without raising."""

        started = time.perf_counter()
        self.logger.info(
            "Processing batch",
            extra={
                "sync_batch": batch.label,
                "sync_batch_accounts": len(batch.accounts),
                "sync_batch_contacts": len(batch.contacts),
            },
        )
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="subsync-write") as pool:
            account_future = pool.submit(self._write_accounts, batch.accounts, snapshot)
            contact_future = pool.submit(self._write_contacts, batch.contacts, snapshot)
            wait([account_future, contact_future])

        failures = [exc for exc in (account_future.exception(), contact_future.exception()) if exc is not None]
        if failures:
            self.stats.increment(batches_failed=1, errors=1)
            record_sync_batch(operation=batch.operation, status="failure", duration_seconds=time.perf_counter() - started)
            self.logger.error(
                "Batch failed",
                extra={"sync_batch": batch.label, "error": "; ".join(str(exc) for exc in failures)},
            )
            return BatchResult(batch.operation, batch.index, False, error=str(failures[0]))

        accounts: SubWriteResult = account_future.result()
        contacts: SubWriteResult = contact_future.result()

        outcome = AssociationOutcome()
        if batch.associations:
            if accounts.records and contacts.records:
                outcome = self.resolver.resolve_and_link(batch.associations, accounts.records, contacts.records)
            else:
                outcome = AssociationOutcome(skipped=len(batch.associations))
        self.stats.increment(
            associations_created=outcome.created,
            associations_skipped=outcome.skipped,
            associations_failed=outcome.failed,
            batches_processed=1,
        )
        duration = time.perf_counter() - started
        record_sync_batch(operation=batch.operation, status="success", duration_seconds=duration)
        self.logger.info(
            "Batch complete",
            extra={
                "sync_batch": batch.label,
                "sync_accounts_written": len(accounts.records),
                "sync_contacts_written": len(contacts.records),
                "sync_associations_created": outcome.created,
                "sync_duration_seconds": round(duration, 3),
            },
        )
        return BatchResult(batch.operation, batch.index, True, accounts, contacts, outcome)

    # Internal helpers -----------------------------------------------------------

    def _write_accounts(self, payloads: Sequence[AccountPayload], snapshot: ExistenceSnapshot) -> SubWriteResult:
        to_create: list[dict[str, str]] = []
        to_update: list[tuple[str, dict[str, str]]] = []
        for payload in payloads:
            remote_id = snapshot.account_ids.get(payload.business_id)
            if remote_id is None:
                to_create.append(payload.to_properties())
            else:
                to_update.append((remote_id, payload.to_properties()))

        created = self.client.batch_create_accounts(to_create)
        self.stats.increment(accounts_created=len(created.records), errors=created.error_count)
        record_records_written(entity="account", action="created", count=len(created.records))
        updated = self.client.batch_update_accounts(to_update)
        self.stats.increment(accounts_updated=len(updated.records), errors=updated.error_count)
        record_records_written(entity="account", action="updated", count=len(updated.records))
        return SubWriteResult(created=created.records, updated=updated.records)

    def _write_contacts(self, payloads: Sequence[ContactPayload], snapshot: ExistenceSnapshot) -> SubWriteResult:
        to_create: list[dict[str, str]] = []
        to_update: list[tuple[str, dict[str, str]]] = []
        for payload in payloads:
            remote_id = snapshot.contact_ids.get(payload.email)
            if remote_id is None:
                to_create.append(payload.to_properties())
            else:
                to_update.append((remote_id, payload.to_properties()))

        created = self.client.batch_create_contacts(to_create)
        self.stats.increment(contacts_created=len(created.records), errors=created.error_count)
        record_records_written(entity="contact", action="created", count=len(created.records))
        updated = self.client.batch_update_contacts(to_update)
        self.stats.increment(contacts_updated=len(updated.records), errors=updated.error_count)
        record_records_written(entity="contact", action="updated", count=len(updated.records))
        return SubWriteResult(created=created.records, updated=updated.records)


__all__ = [
    "BatchExecutor",
    "BatchResult",
    "ReadPhaseError",
    "SubWriteResult",
    "SyncSettings",
]
