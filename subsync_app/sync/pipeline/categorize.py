"""
Activity split and existence categorization for validated subscription records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence, Tuple

from subsync_app.sync.contracts import DeactivationCandidate, ValidatedRecord, parse_bool, project_deactivation


@dataclass(frozen=True)
class ExistenceSnapshot:
    """
    Remote state observed by the read phase.

    Attributes:
        account_ids: Business id to remote Account id for every Account found.
        contact_ids: Lower-cased email to remote Contact id for every Contact found.
        active_account_ids: Business ids whose remote ``active_subscription`` is true.
    """

    account_ids: Mapping[str, str] = field(default_factory=dict)
    contact_ids: Mapping[str, str] = field(default_factory=dict)
    active_account_ids: frozenset[str] = frozenset()

    @property
    def existing_account_ids(self) -> frozenset[str]:
        return frozenset(self.account_ids)

    @property
    def existing_contact_emails(self) -> frozenset[str]:
        return frozenset(self.contact_ids)


@dataclass(frozen=True)
class ActivitySplit:
    active: Tuple[ValidatedRecord, ...]
    inactive: Tuple[ValidatedRecord, ...]
    all_for_creation: Tuple[ValidatedRecord, ...]


@dataclass(frozen=True)
class Categorization:
    to_create: Tuple[ValidatedRecord, ...]
    to_update: Tuple[ValidatedRecord, ...]

    @property
    def total(self) -> int:
        return len(self.to_create) + len(self.to_update)


def is_active(record: ValidatedRecord) -> bool:
    return parse_bool(record.get("active_sub"))


def dedupe_by_business_id(records: Iterable[ValidatedRecord]) -> Tuple[ValidatedRecord, ...]:
    """
    Keep one record per business id; a later row for the same id wins.

    The surviving record takes the position of its last occurrence so the
    result reads like the CSV with earlier duplicates removed.
    """

    latest: dict[str, ValidatedRecord] = {}
    for record in records:
        latest.pop(record.user_id, None)
        latest[record.user_id] = record
    return tuple(latest.values())


def split_by_activity(records: Iterable[ValidatedRecord]) -> ActivitySplit:
    """Partition records by ``active_sub``; every record is a creation candidate."""

    active: list[ValidatedRecord] = []
    inactive: list[ValidatedRecord] = []
    every: list[ValidatedRecord] = []
    for record in records:
        every.append(record)
        if is_active(record):
            active.append(record)
        else:
            inactive.append(record)
    return ActivitySplit(active=tuple(active), inactive=tuple(inactive), all_for_creation=tuple(every))


def categorize_by_existence(records: Sequence[ValidatedRecord], existence: ExistenceSnapshot) -> Categorization:
    """
    Classify each record as CREATE or UPDATE against the read-phase snapshot.

    A record is an UPDATE only when both its Account and its Contact already
    exist remotely; otherwise it is a CREATE. Each record lands in exactly one
    bucket, in input order.
    """

    accounts = existence.account_ids
    contacts = existence.contact_ids
    to_create: list[ValidatedRecord] = []
    to_update: list[ValidatedRecord] = []
    for record in records:
        if record.user_id in accounts and record.email in contacts:
            to_update.append(record)
        else:
            to_create.append(record)
    return Categorization(to_create=tuple(to_create), to_update=tuple(to_update))


def build_deactivation_map(inactive: Iterable[ValidatedRecord]) -> dict[str, DeactivationCandidate]:
    """Map business id to its reset payload; a later row for the same id wins."""

    mapping: dict[str, DeactivationCandidate] = {}
    for record in inactive:
        if not record.user_id:
            continue
        mapping[record.user_id] = project_deactivation(record)
    return mapping


def detect_deactivations(
    deactivation_map: Mapping[str, DeactivationCandidate],
    remote_active_ids: Iterable[str],
) -> list[DeactivationCandidate]:
    """Return candidates that are locally inactive but still active remotely."""

    active = set(remote_active_ids)
    return [candidate for business_id, candidate in deactivation_map.items() if business_id in active]


__all__ = [
    "ActivitySplit",
    "Categorization",
    "ExistenceSnapshot",
    "build_deactivation_map",
    "categorize_by_existence",
    "dedupe_by_business_id",
    "detect_deactivations",
    "is_active",
    "split_by_activity",
]
