"""Batch planning for the subscription sync write phase."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence, Tuple

from subsync_app.sync.adapters.hubspot.client import HUBSPOT_BATCH_LIMIT
from subsync_app.sync.contracts import (
    AccountPayload,
    AssociationPair,
    ContactPayload,
    DeactivationCandidate,
    ValidatedRecord,
    project_account,
    project_contact,
)

BatchOperation = Literal["create", "update"]


@dataclass(frozen=True)
class Batch:
    """A bounded group of payloads submitted together."""

    operation: BatchOperation
    index: int
    total: int
    accounts: Tuple[AccountPayload, ...]
    contacts: Tuple[ContactPayload, ...]
    associations: Tuple[AssociationPair, ...]

    @property
    def label(self) -> str:
        return f"{self.operation} {self.index}/{self.total}"


@dataclass(frozen=True)
class DeactivationBatch:
    index: int
    total: int
    candidates: Tuple[DeactivationCandidate, ...]


def validate_batch_size(batch_size: int) -> int:
    size = int(batch_size)
    if size < 1 or size > HUBSPOT_BATCH_LIMIT:
        raise ValueError(f"batch_size must be between 1 and {HUBSPOT_BATCH_LIMIT}, got {batch_size}")
    return size


def plan_batches(
    records: Sequence[ValidatedRecord],
    operation: BatchOperation,
    batch_size: int = HUBSPOT_BATCH_LIMIT,
) -> list[Batch]:
    """
    Split records into fixed-size batches with their Account/Contact payloads.

    Association pairs are drawn only from records of the same batch that
    produced both an Account and a Contact payload.
    """

    size = validate_batch_size(batch_size)
    chunks = [records[start : start + size] for start in range(0, len(records), size)]
    total = len(chunks)
    batches: list[Batch] = []
    for index, chunk in enumerate(chunks, start=1):
        accounts: list[AccountPayload] = []
        contacts: dict[str, ContactPayload] = {}
        associations: list[AssociationPair] = []
        for record in chunk:
            account = project_account(record)
            contact = project_contact(record)
            if account is not None:
                accounts.append(account)
            if contact is not None:
                # One input per email; HubSpot rejects a bulk call that repeats one.
                contacts.pop(contact.email, None)
                contacts[contact.email] = contact
            if account is not None and contact is not None:
                associations.append(AssociationPair(business_id=account.business_id, email=contact.email))
        batches.append(
            Batch(
                operation=operation,
                index=index,
                total=total,
                accounts=tuple(accounts),
                contacts=tuple(contacts.values()),
                associations=tuple(associations),
            )
        )
    return batches


def plan_deactivation_batches(
    candidates: Sequence[DeactivationCandidate],
    batch_size: int = HUBSPOT_BATCH_LIMIT,
) -> list[DeactivationBatch]:
    size = validate_batch_size(batch_size)
    chunks = [tuple(candidates[start : start + size]) for start in range(0, len(candidates), size)]
    return [
        DeactivationBatch(index=index, total=len(chunks), candidates=chunk)
        for index, chunk in enumerate(chunks, start=1)
    ]


__all__ = [
    "Batch",
    "BatchOperation",
    "DeactivationBatch",
    "plan_batches",
    "plan_deactivation_batches",
    "validate_batch_size",
]
