from __future__ import annotations

import threading
from typing import Iterable, Mapping, Sequence, Tuple

import pytest

from subsync_app.sync.adapters.hubspot import BatchWriteResult, HubSpotRemoteError, RemoteRecord
from subsync_app.sync.pipeline import SyncEngine, SyncSettings


class FakeHubSpotClient:
    """
    In-memory stand-in for HubSpotClient.

    Accounts are keyed by their ``id`` property and Contacts by email, like the
    real portal. ``fail`` maps a method name to a predicate over the call's
    inputs; when it returns True the call raises HubSpotRemoteError. ``reject`` maps
    a batch method name to a predicate over one input; matching inputs are left
    unwritten and reported under ``errors`` like a partial bulk response.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_id = 1000
        self.accounts: dict[str, dict[str, str]] = {}
        self.contacts: dict[str, dict[str, str]] = {}
        self.associations: list[tuple[str, str]] = []
        self.calls: list[tuple[str, object]] = []
        self.fail: dict[str, object] = {}
        self.reject: dict[str, object] = {}

    # Seeding helpers

    def seed_account(self, business_id: str, *, active: bool = False) -> str:
        remote_id = self._new_id()
        self.accounts[remote_id] = {"id": business_id, "active_subscription": "true" if active else "false"}
        return remote_id

    def seed_contact(self, email: str) -> str:
        remote_id = self._new_id()
        self.contacts[remote_id] = {"email": email}
        return remote_id

    def account_by_business_id(self, business_id: str) -> dict[str, str] | None:
        for properties in self.accounts.values():
            if properties.get("id") == business_id:
                return properties
        return None

    # HubSpotClient surface

    def search_accounts_by_ids(self, business_ids: Iterable[str]) -> list[RemoteRecord]:
        wanted = set(business_ids)
        self._record("search_accounts_by_ids", sorted(wanted))
        with self._lock:
            return [
                RemoteRecord(id=remote_id, properties=dict(props))
                for remote_id, props in self.accounts.items()
                if props.get("id") in wanted
            ]

    def search_contacts_by_emails(self, emails: Iterable[str]) -> list[RemoteRecord]:
        wanted = set(emails)
        self._record("search_contacts_by_emails", sorted(wanted))
        with self._lock:
            return [
                RemoteRecord(id=remote_id, properties=dict(props))
                for remote_id, props in self.contacts.items()
                if props.get("email") in wanted
            ]

    def batch_create_accounts(self, properties: Sequence[Mapping[str, str]]) -> BatchWriteResult:
        self._record("batch_create_accounts", list(properties))
        return self._create("batch_create_accounts", self.accounts, properties)

    def batch_update_accounts(self, updates: Sequence[Tuple[str, Mapping[str, str]]]) -> BatchWriteResult:
        self._record("batch_update_accounts", list(updates))
        return self._update("batch_update_accounts", self.accounts, updates)

    def batch_create_contacts(self, properties: Sequence[Mapping[str, str]]) -> BatchWriteResult:
        self._record("batch_create_contacts", list(properties))
        return self._create("batch_create_contacts", self.contacts, properties)

    def batch_update_contacts(self, updates: Sequence[Tuple[str, Mapping[str, str]]]) -> BatchWriteResult:
        self._record("batch_update_contacts", list(updates))
        return self._update("batch_update_contacts", self.contacts, updates)

    def create_association(self, contact_id: str, account_id: str) -> dict:
        self._record("create_association", (contact_id, account_id))
        with self._lock:
            self.associations.append((contact_id, account_id))
        return {}

    # Internals

    def calls_to(self, name: str) -> list[object]:
        with self._lock:
            return [payload for call, payload in self.calls if call == name]

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def _record(self, name: str, payload: object) -> None:
        predicate = self.fail.get(name)
        with self._lock:
            self.calls.append((name, payload))
        if predicate is not None and predicate(payload):
            raise HubSpotRemoteError(f"{name} failed", status_code=500)

    def _rejected(self, name: str, item: object) -> bool:
        predicate = self.reject.get(name)
        return predicate is not None and predicate(item)

    def _create(self, name, store, properties) -> BatchWriteResult:
        created, errors = [], []
        with self._lock:
            for props in properties:
                if self._rejected(name, props):
                    errors.append({"status": "error", "category": "VALIDATION_ERROR", "context": dict(props)})
                    continue
                remote_id = self._new_id()
                store[remote_id] = dict(props)
                created.append(RemoteRecord(id=remote_id, properties=dict(props)))
        return BatchWriteResult(records=tuple(created), errors=tuple(errors))

    def _update(self, name, store, updates) -> BatchWriteResult:
        updated, errors = [], []
        with self._lock:
            for remote_id, props in updates:
                if self._rejected(name, (remote_id, props)):
                    errors.append({"status": "error", "category": "VALIDATION_ERROR", "context": {"id": remote_id}})
                    continue
                store.setdefault(remote_id, {}).update(props)
                updated.append(RemoteRecord(id=remote_id, properties=dict(store[remote_id])))
        return BatchWriteResult(records=tuple(updated), errors=tuple(errors))


@pytest.fixture
def fake_hubspot():
    return FakeHubSpotClient()


@pytest.fixture
def sleeps():
    """Recorded sleep durations; pass ``sleeps.append`` as ``sleep_fn``."""
    return []


@pytest.fixture
def make_engine(fake_hubspot, sleeps):
    def _factory(**settings) -> SyncEngine:
        options = {"wave_cooldown": 0.0, "lookup_delay": 0.0}
        options.update(settings)
        return SyncEngine(fake_hubspot, SyncSettings(**options), sleep_fn=sleeps.append)

    return _factory


@pytest.fixture
def use_fake_engine(app, fake_hubspot):
    """Route the app's engine factory to the in-memory HubSpot fake."""
    from subsync_app.utils.sync import set_engine_factory

    set_engine_factory(lambda _app: SyncEngine(fake_hubspot, SyncSettings(wave_cooldown=0.0, lookup_delay=0.0)), app)
    return fake_hubspot
