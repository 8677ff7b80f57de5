"""OAuth token storage and refresh for the HubSpot adapter."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import requests

from subsync_app.sync.adapters.hubspot.errors import HubSpotTokenError
from subsync_app.sync.metrics import record_token_refresh

HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"

logger = logging.getLogger(__name__)


def read_token_file(path: Path) -> dict[str, Any] | None:
    """Return the cached token payload, or None when absent or unreadable."""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed HubSpot token file: %s", path)
        return None
    return payload if isinstance(payload, dict) else None


def write_token_file(path: Path, tokens: Mapping[str, Any]) -> None:
    """Persist tokens to disk with owner-only permissions."""

    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {**tokens, "updated_at": datetime.now(timezone.utc).isoformat()}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.warning("Unable to set permissions on token cache: %s", path)


class HubSpotTokenStore:
    """
    Shared, read-mostly holder of the HubSpot OAuth credential.

    ``refresh`` is the only mutation. Callers pass the access token that was
    rejected; when another thread has already replaced it, the current token
    is returned without a second round-trip, so concurrent refreshes converge
    on a single new credential.
    """

    def __init__(
        self,
        *,
        token_file: Path | str,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None = None,
        session: requests.Session | None = None,
        token_url: str = HUBSPOT_TOKEN_URL,
        timeout: float = 15.0,
    ) -> None:
        self.token_file = Path(token_file)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.session = session or requests.Session()
        self.token_url = token_url
        self.timeout = timeout
        self._lock = threading.Lock()
        self._tokens: dict[str, Any] = read_token_file(self.token_file) or {}

    @property
    def access_token(self) -> str:
        with self._lock:
            token = self._tokens.get("access_token")
        if not token:
            raise HubSpotTokenError("No access token available. Complete the OAuth authorization first.")
        return str(token)

    @property
    def has_refresh_token(self) -> bool:
        with self._lock:
            return bool(self._tokens.get("refresh_token"))

    def refresh(self, stale_token: str | None = None) -> str:
        """Refresh the access token, returning the credential to retry with."""

        with self._lock:
            current = self._tokens.get("access_token")
            if stale_token is not None and current and current != stale_token:
                record_token_refresh("reused")
                return str(current)

            refresh_token = self._tokens.get("refresh_token")
            if not refresh_token:
                record_token_refresh("failure")
                raise HubSpotTokenError("No refresh token available")

            payload = self._post_grant(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                }
            )
            self._tokens = {
                **self._tokens,
                "access_token": payload["access_token"],
                "expires_in": payload.get("expires_in"),
            }
            if payload.get("refresh_token"):
                self._tokens["refresh_token"] = payload["refresh_token"]
            write_token_file(self.token_file, self._tokens)
            record_token_refresh("success")
            logger.info("HubSpot access token refreshed")
            return str(self._tokens["access_token"])

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an OAuth authorization code for tokens and persist them."""

        if not code:
            raise HubSpotTokenError("Authorization code is required")
        payload = self._post_grant(
            {
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri or "",
                "code": code,
            }
        )
        with self._lock:
            self._tokens = {
                "access_token": payload["access_token"],
                "refresh_token": payload.get("refresh_token"),
                "expires_in": payload.get("expires_in"),
                "token_type": payload.get("token_type"),
            }
            write_token_file(self.token_file, self._tokens)
            return dict(self._tokens)

    def _post_grant(self, grant: Mapping[str, str]) -> dict[str, Any]:
        if not self.client_id or not self.client_secret:
            raise HubSpotTokenError("HubSpot OAuth client credentials are not configured")
        try:
            response = self.session.post(
                self.token_url,
                data={**grant, "client_id": self.client_id, "client_secret": self.client_secret},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            if grant.get("grant_type") == "refresh_token":
                record_token_refresh("failure")
            raise HubSpotTokenError(f"Token request failed: {exc}") from exc
        if not response.ok:
            if grant.get("grant_type") == "refresh_token":
                record_token_refresh("failure")
            raise HubSpotTokenError(f"Token request failed: {response.status_code} {response.text}")
        payload = response.json()
        if not payload.get("access_token"):
            raise HubSpotTokenError("Missing access_token in HubSpot OAuth response")
        return payload
