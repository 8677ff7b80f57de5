"""
HubSpot CRM REST client used by the subscription sync.

Covers only the capabilities the sync engine needs: chunked existence searches,
bulk create/update of Accounts (custom object) and Contacts, and one-by-one
Contact→Account associations through the v4 associations API. Every call gets
exactly one token refresh and retry on a 401.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Mapping, Sequence, Tuple

import requests

from subsync_app.sync.adapters.hubspot.errors import HubSpotRemoteError
from subsync_app.sync.adapters.hubspot.tokens import HubSpotTokenStore

HUBSPOT_API_BASE_URL = "https://api.hubapi.com"
HUBSPOT_BATCH_LIMIT = 100
HUBSPOT_SEARCH_PAGE_SIZE = 100
CONTACTS_OBJECT_TYPE = "contacts"
DEFAULT_ASSOCIATION_TYPE_ID = 1

ACCOUNT_LOOKUP_PROPERTIES: Tuple[str, ...] = ("id", "active_subscription")
CONTACT_LOOKUP_PROPERTIES: Tuple[str, ...] = ("email", "user_type")


@dataclass(frozen=True)
class RemoteRecord:
    """A HubSpot object as returned by search and batch endpoints."""

    id: str
    properties: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RemoteRecord":
        return cls(id=str(payload.get("id")), properties=dict(payload.get("properties") or {}))

    def get(self, name: str) -> Any:
        return self.properties.get(name)


@dataclass(frozen=True)
class BatchWriteResult:
    """Outcome of one bulk create/update; HubSpot reports rejected inputs under ``errors``."""

    records: Tuple[RemoteRecord, ...] = ()
    errors: Tuple[Mapping[str, Any], ...] = ()

    @property
    def error_count(self) -> int:
        return len(self.errors)


def _chunked(values: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class HubSpotClient:
    """Thin ``requests`` wrapper around the HubSpot CRM v3/v4 endpoints."""

    def __init__(
        self,
        *,
        tokens: HubSpotTokenStore,
        accounts_object_type: str,
        session: requests.Session | None = None,
        base_url: str = HUBSPOT_API_BASE_URL,
        timeout: float = 30.0,
        lookup_chunk_size: int = HUBSPOT_SEARCH_PAGE_SIZE,
        lookup_delay: float = 0.1,
        association_type_id: int | None = None,
        sleep_fn=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.tokens = tokens
        self.accounts_object_type = accounts_object_type
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.lookup_chunk_size = max(1, min(int(lookup_chunk_size), HUBSPOT_SEARCH_PAGE_SIZE))
        self.lookup_delay = lookup_delay
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)
        self._association_type_id = association_type_id
        self._association_lock = threading.Lock()

    # Public API -----------------------------------------------------------------

    def search_accounts_by_ids(self, business_ids: Iterable[str]) -> List[RemoteRecord]:
        """Find Accounts whose ``id`` property is one of ``business_ids``."""

        return self._search(
            self.accounts_object_type,
            property_name="id",
            values=business_ids,
            properties=ACCOUNT_LOOKUP_PROPERTIES,
        )

    def search_contacts_by_emails(self, emails: Iterable[str]) -> List[RemoteRecord]:
        """Find Contacts whose ``email`` property is one of ``emails``."""

        return self._search(
            CONTACTS_OBJECT_TYPE,
            property_name="email",
            values=emails,
            properties=CONTACT_LOOKUP_PROPERTIES,
        )

    def batch_create_accounts(self, properties: Sequence[Mapping[str, str]]) -> BatchWriteResult:
        return self._batch(self.accounts_object_type, "create", [{"properties": dict(p)} for p in properties])

    def batch_update_accounts(self, updates: Sequence[Tuple[str, Mapping[str, str]]]) -> BatchWriteResult:
        """Update Accounts in bulk; ``updates`` holds ``(remote_id, properties)`` pairs."""

        return self._batch(
            self.accounts_object_type,
            "update",
            [{"id": remote_id, "properties": dict(props)} for remote_id, props in updates],
        )

    def batch_create_contacts(self, properties: Sequence[Mapping[str, str]]) -> BatchWriteResult:
        return self._batch(CONTACTS_OBJECT_TYPE, "create", [{"properties": dict(p)} for p in properties])

    def batch_update_contacts(self, updates: Sequence[Tuple[str, Mapping[str, str]]]) -> BatchWriteResult:
        return self._batch(
            CONTACTS_OBJECT_TYPE,
            "update",
            [{"id": remote_id, "properties": dict(props)} for remote_id, props in updates],
        )

    def create_association(self, contact_id: str, account_id: str) -> Mapping[str, Any]:
        """Link one Contact to one Account using the discovered association type."""

        type_id = self.get_association_type_id()
        return self._request(
            "PUT",
            f"/crm/v4/objects/{CONTACTS_OBJECT_TYPE}/{contact_id}/associations/"
            f"{self.accounts_object_type}/{account_id}",
            json=[{"associationCategory": "USER_DEFINED", "associationTypeId": type_id}],
        )

    def get_association_type_id(self) -> int:
        """
        Resolve the Contact→Account association type once per client.

        Uses the first ``USER_DEFINED`` label defined between the two object
        types and falls back to ``1`` when none is defined or discovery fails.
        """

        with self._association_lock:
            if self._association_type_id is not None:
                return self._association_type_id
            try:
                payload = self._request(
                    "GET",
                    f"/crm/v4/associations/{CONTACTS_OBJECT_TYPE}/{self.accounts_object_type}/labels",
                )
            except HubSpotRemoteError as exc:
                self.logger.warning(
                    "Association label discovery failed; using fallback type id",
                    extra={"hubspot_status": exc.status_code, "fallback_type_id": DEFAULT_ASSOCIATION_TYPE_ID},
                )
                payload = {}
            type_id = DEFAULT_ASSOCIATION_TYPE_ID
            for definition in payload.get("results") or []:
                if definition.get("category") == "USER_DEFINED" and definition.get("typeId") is not None:
                    type_id = int(definition["typeId"])
                    break
            self._association_type_id = type_id
            self.logger.info("Using association type id %s", type_id)
            return type_id

    # Internal helpers -----------------------------------------------------------

    def _search(
        self,
        object_type: str,
        *,
        property_name: str,
        values: Iterable[str],
        properties: Sequence[str],
    ) -> List[RemoteRecord]:
        distinct = list(dict.fromkeys(value for value in values if value))
        if not distinct:
            return []

        results: List[RemoteRecord] = []
        chunks = list(_chunked(distinct, self.lookup_chunk_size))
        for index, chunk in enumerate(chunks):
            after: str | None = None
            while True:
                body: dict[str, Any] = {
                    "filterGroups": [
                        {"filters": [{"propertyName": property_name, "operator": "IN", "values": list(chunk)}]}
                    ],
                    "properties": list(properties),
                    "limit": HUBSPOT_SEARCH_PAGE_SIZE,
                }
                if after:
                    body["after"] = after
                payload = self._request("POST", f"/crm/v3/objects/{object_type}/search", json=body)
                results.extend(RemoteRecord.from_payload(item) for item in payload.get("results") or [])
                after = ((payload.get("paging") or {}).get("next") or {}).get("after")
                if not after:
                    break
            if index + 1 < len(chunks) and self.lookup_delay > 0:
                self.sleep(self.lookup_delay)

        self.logger.debug(
            "HubSpot search complete",
            extra={
                "hubspot_object_type": object_type,
                "hubspot_search_values": len(distinct),
                "hubspot_search_chunks": len(chunks),
                "hubspot_search_results": len(results),
            },
        )
        return results

    def _batch(self, object_type: str, action: str, inputs: List[Mapping[str, Any]]) -> BatchWriteResult:
        if not inputs:
            return BatchWriteResult()
        if len(inputs) > HUBSPOT_BATCH_LIMIT:
            raise ValueError(f"HubSpot batch {action} accepts at most {HUBSPOT_BATCH_LIMIT} inputs")
        payload = self._request("POST", f"/crm/v3/objects/{object_type}/batch/{action}", json={"inputs": inputs})
        errors = payload.get("errors") or []
        if errors:
            self.logger.warning(
                "HubSpot batch %s reported partial errors",
                action,
                extra={"hubspot_object_type": object_type, "hubspot_error_count": len(errors)},
            )
        return BatchWriteResult(
            records=tuple(RemoteRecord.from_payload(item) for item in payload.get("results") or []),
            errors=tuple(errors),
        )

    def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        token = self.tokens.access_token
        response = self._send(method, path, token, json=json)
        if response.status_code == 401:
            self.logger.info("HubSpot returned 401; refreshing access token and retrying once")
            token = self.tokens.refresh(token)
            response = self._send(method, path, token, json=json)
            if response.status_code == 401:
                raise HubSpotRemoteError(
                    f"HubSpot {method} {path} unauthorized after token refresh", status_code=401
                )
        if not response.ok:
            raise HubSpotRemoteError(
                f"HubSpot {method} {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.text:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise HubSpotRemoteError(
                f"HubSpot {method} {path} returned a malformed body: {exc}",
                status_code=response.status_code,
            ) from exc

    def _send(self, method: str, path: str, token: str, *, json: Any = None) -> requests.Response:
        try:
            return self.session.request(
                method,
                f"{self.base_url}{path}",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                json=json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise HubSpotRemoteError(f"HubSpot {method} {path} request failed: {exc}") from exc
