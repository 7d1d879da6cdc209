"""Exception types shared across matchfeed services."""
from __future__ import annotations

from typing import Optional


class AdapterError(Exception):
    """A provider adapter could not produce a result."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderHTTPError(AdapterError):
    """A provider answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, retry_after: Optional[float] = None) -> None:
        super().__init__(f"{provider} responded with HTTP {status_code}", status_code=status_code)
        self.provider = provider
        self.retry_after = retry_after


class InvalidQueryError(ValueError):
    """Malformed caller input (unknown capability, missing or invalid parameter)."""


class UnknownProviderError(KeyError):
    """No priority entry exists for the requested (provider, capability) pair."""

    def __init__(self, provider_id: str, capability: str) -> None:
        super().__init__(f"{provider_id}/{capability}")
        self.provider_id = provider_id
        self.capability = capability

    def __str__(self) -> str:
        return f"No provider entry for {self.provider_id}/{self.capability}"


class UnsupportedQueryError(AdapterError):
    """The adapter cannot serve this sport, league or capability; no request was made."""
