"""Exception hierarchy for the HubSpot adapter."""

from __future__ import annotations


class HubSpotError(RuntimeError):
    """Base error for HubSpot API failures."""


class HubSpotRemoteError(HubSpotError):
    """Raised for non-2xx responses, transport failures, or a 401 that survives a refresh."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HubSpotTokenError(HubSpotError):
    """Raised when tokens are missing or the token endpoint rejects a grant."""
