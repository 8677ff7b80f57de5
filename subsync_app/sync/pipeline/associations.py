"""Contact→Account association resolution for a completed batch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from subsync_app.sync.adapters.hubspot import HubSpotClient, HubSpotError, RemoteRecord
from subsync_app.sync.contracts import AssociationPair
from subsync_app.sync.metrics import record_association


@dataclass(frozen=True)
class AssociationOutcome:
    created: int = 0
    skipped: int = 0
    failed: int = 0


def build_account_lookup(records: Iterable[RemoteRecord]) -> dict[str, str]:
    """Map business id (``properties.id``) to remote Account id."""

    return {str(record.get("id")): record.id for record in records if record.get("id")}


def build_contact_lookup(records: Iterable[RemoteRecord]) -> dict[str, str]:
    """Map lower-cased ``properties.email`` to remote Contact id."""

    return {str(record.get("email")).lower(): record.id for record in records if record.get("email")}


class AssociationResolver:
    """
    Link the Contacts and Accounts written by one batch.

    Remote ids come only from the records the batch's writes just returned,
    never from a fresh query. Association completeness is best effort: a pair
    missing either side is skipped and a failing pair is counted as failed,
    neither of which fails the batch.
    """

    def __init__(self, client: HubSpotClient, *, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)

    def resolve_and_link(
        self,
        pairs: Sequence[AssociationPair],
        account_results: Sequence[RemoteRecord],
        contact_results: Sequence[RemoteRecord],
    ) -> AssociationOutcome:
        accounts = build_account_lookup(account_results)
        contacts = build_contact_lookup(contact_results)

        created = skipped = failed = 0
        for pair in pairs:
            account_id = accounts.get(pair.business_id)
            contact_id = contacts.get(pair.email.lower())
            if not account_id or not contact_id:
                skipped += 1
                self.logger.warning(
                    "Skipping association with unresolved ids",
                    extra={
                        "sync_business_id": pair.business_id,
                        "sync_account_resolved": bool(account_id),
                        "sync_contact_resolved": bool(contact_id),
                    },
                )
                continue
            try:
                self.client.create_association(contact_id, account_id)
            except HubSpotError as exc:
                failed += 1
                self.logger.warning(
                    "Association create failed",
                    extra={
                        "sync_business_id": pair.business_id,
                        "hubspot_contact_id": contact_id,
                        "hubspot_account_id": account_id,
                        "error": str(exc),
                    },
                )
                continue
            created += 1

        record_association("created", created)
        record_association("skipped", skipped)
        record_association("failed", failed)
        return AssociationOutcome(created=created, skipped=skipped, failed=failed)


__all__ = ["AssociationOutcome", "AssociationResolver", "build_account_lookup", "build_contact_lookup"]
