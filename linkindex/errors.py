"""
Error taxonomy for linkindex.

Every failure the core can report derives from `LinkError`, so the HTTP layer
can map a small, closed set of exceptions onto status codes.

    InvalidInput        rejected before any backend access (400)
    AliasInUse          alias bound to another record (400, not retried)
    NotFound            token resolves to nothing (404)
    BackendUnavailable  transient key-value failure (503, safe to retry)
    WriteConflict       optimistic update lost too many races (503)
    OutOfRangeValue     visit outside the histogram window (reported only)
    EncodingError       corrupt histogram or record blob (500)
"""

from typing import Optional


class LinkError(Exception):
    """Base class for all linkindex errors."""


class InvalidInput(LinkError, ValueError):
    """Malformed URL or alias."""


class AliasInUse(LinkError):
    """The alias already points at a different record."""

    def __init__(self, alias: str, existing_suffix: Optional[str] = None):
        super().__init__(f"Alias already in use: {alias!r}")
        self.alias = alias
        self.existing_suffix = existing_suffix


class NotFound(LinkError, KeyError):
    """No record for the given token."""

    def __init__(self, token: str):
        super().__init__(token)
        self.token = token

    def __str__(self) -> str:
        return f"No link for token: {self.token!r}"


class BackendUnavailable(LinkError):
    """The key-value backend failed or timed out."""


class WriteConflict(BackendUnavailable):
    """Compare-and-set retries exhausted on a hot key."""


class OutOfRangeValue(LinkError, ValueError):
    """A timestamp falls outside the histogram window."""


class EncodingError(LinkError):
    """A persisted blob could not be decoded."""
