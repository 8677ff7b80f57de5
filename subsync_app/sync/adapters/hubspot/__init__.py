"""HubSpot adapter readiness and credential validation utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Tuple

from .client import BatchWriteResult, HubSpotClient, RemoteRecord
from .errors import HubSpotError, HubSpotRemoteError, HubSpotTokenError
from .tokens import HubSpotTokenStore, read_token_file

REQUIRED_ENV_VARS: Tuple[str, ...] = ("HUBSPOT_CLIENT_ID", "HUBSPOT_CLIENT_SECRET")
OPTIONAL_ENV_VARS: Tuple[str, ...] = ("HUBSPOT_REDIRECT_URI", "HUBSPOT_ACCOUNTS_OBJECT_TYPE_ID")
DEFAULT_TOKEN_FILE = "instance/.oauth-tokens.json"


class HubSpotAdapterError(RuntimeError):
    """Base error for HubSpot adapter readiness issues."""


class HubSpotAdapterConfigError(HubSpotAdapterError):
    """Raised when required configuration or environment variables are missing."""


class HubSpotAdapterAuthError(HubSpotAdapterError):
    """Raised when no usable OAuth tokens are stored."""


@dataclass(frozen=True)
class HubSpotAdapterReadiness:
    missing_env_vars: Tuple[str, ...]
    token_file: str
    auth_status: Literal["ok", "missing-tokens"]
    notes: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        if self.missing_env_vars:
            return "missing-env"
        if self.auth_status != "ok":
            return "not-authenticated"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.missing_env_vars:
            messages.append(f"Missing required HubSpot env vars: {', '.join(self.missing_env_vars)}")
        if self.auth_status != "ok":
            messages.append(
                f"No HubSpot OAuth tokens found in {self.token_file}. "
                "Complete the OAuth flow via /oauth/callback or `flask sync exchange-code`."
            )
        if self.notes:
            messages.extend(self.notes)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "missing_env_vars": list(self.missing_env_vars),
            "token_file": self.token_file,
            "auth_status": self.auth_status,
            "messages": list(self.messages()),
        }
        if self.notes:
            payload["notes"] = list(self.notes)
        return payload


def check_hubspot_adapter_readiness(
    env: Mapping[str, object] | None = None,
    *,
    token_file: str | Path | None = None,
) -> HubSpotAdapterReadiness:
    """
    Perform a non-raising readiness check for the HubSpot adapter.

    Args:
        env: Mapping of settings to inspect (Flask config or os.environ). Defaults to os.environ.
        token_file: Token cache location; defaults to ``HUBSPOT_TOKEN_FILE`` from ``env``.

    Returns:
        HubSpotAdapterReadiness describing configuration and token status.
    """

    env = os.environ if env is None else env
    missing_env = tuple(sorted(var for var in REQUIRED_ENV_VARS if not env.get(var)))
    path = Path(token_file or env.get("HUBSPOT_TOKEN_FILE") or DEFAULT_TOKEN_FILE)
    tokens = read_token_file(path) or {}
    auth_status: Literal["ok", "missing-tokens"] = (
        "ok" if tokens.get("access_token") and tokens.get("refresh_token") else "missing-tokens"
    )

    optional_missing = tuple(sorted(var for var in OPTIONAL_ENV_VARS if not env.get(var)))
    notes: Tuple[str, ...] = ()
    if optional_missing:
        notes = (f"Optional env vars not set: {', '.join(optional_missing)}. Defaults will be used.",)

    return HubSpotAdapterReadiness(
        missing_env_vars=missing_env,
        token_file=str(path),
        auth_status=auth_status,
        notes=notes,
    )


def ensure_hubspot_adapter_ready(
    env: Mapping[str, object] | None = None,
    *,
    token_file: str | Path | None = None,
) -> HubSpotAdapterReadiness:
    """
    Validate HubSpot adapter readiness, raising actionable errors when not ready.
    """

    readiness = check_hubspot_adapter_readiness(env=env, token_file=token_file)
    if readiness.missing_env_vars:
        raise HubSpotAdapterConfigError(
            "HubSpot credentials not configured. Missing required env vars: "
            + ", ".join(readiness.missing_env_vars)
            + "."
        )
    if readiness.auth_status != "ok":
        raise HubSpotAdapterAuthError("Not authenticated with HubSpot. Please complete OAuth flow first.")
    return readiness


__all__ = [
    "DEFAULT_TOKEN_FILE",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "HubSpotAdapterError",
    "HubSpotAdapterConfigError",
    "HubSpotAdapterAuthError",
    "HubSpotAdapterReadiness",
    "HubSpotClient",
    "HubSpotError",
    "HubSpotRemoteError",
    "HubSpotTokenError",
    "HubSpotTokenStore",
    "BatchWriteResult",
    "RemoteRecord",
    "check_hubspot_adapter_readiness",
    "ensure_hubspot_adapter_ready",
]
