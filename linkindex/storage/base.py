"""
Base storage interface for linkindex.

Purpose:
    Define the small key-value contract the record index is layered on.
    Backends (in-memory, PostgreSQL, Redis) store plain string values under
    string keys and offer exactly two atomic primitives: create-if-absent and
    compare-and-set. No multi-key transactions are assumed.

Errors:
    Backends translate their driver's connection and timeout failures into
    `linkindex.errors.BackendUnavailable` so callers can retry uniformly.

Testing & Coverage:
    These are abstract methods and are not executed directly in tests.
    We annotate them with `# pragma: no cover` so coverage tools don't
    penalize the project for un-runnable abstract declarations.
"""

from abc import ABC, abstractmethod
from typing import Optional


class BaseStorage(ABC):
    """Abstract base class for key-value backends."""

    @abstractmethod  # pragma: no cover
    def get(self, key: str) -> Optional[str]:
        """Return the value stored under `key`, or None."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def set(self, key: str, value: str) -> None:
        """Unconditionally store `value` under `key`."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def set_if_absent(self, key: str, value: str) -> bool:
        """
        Store `value` only if `key` does not exist yet.

        Returns:
            bool: True if this call created the key, False if it was present.

        LLM Prompt Example:
            "Show how SET NX in Redis and INSERT ... ON CONFLICT DO NOTHING in
            Postgres implement the same create-if-absent primitive."
        """
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        """
        Replace the value under `key` only if it still equals `expected`.

        Returns:
            bool: True if the swap happened, False if the key changed or vanished.
        """
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def delete(self, key: str) -> bool:
        """Remove `key`. Returns True if something was removed."""
        raise NotImplementedError
