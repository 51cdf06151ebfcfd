"""
Link records and their index on top of a key-value backend.

Responsibilities:
    - Define the LinkRecord unit of truth and its JSON layout
    - Maintain three key spaces on the backend:
        link:<suffix>        -> record JSON
        url:<sha256(url)>    -> suffix
        alias:<sha256(alias)> -> suffix
    - Offer conditional writes for creation and alias binding, and an
      optimistic read-modify-write loop for record updates

Write ordering:
    The backend has no multi-key transactions. On creation the record is
    written first and the pointers after it, so an interrupted sequence can
    leave an unreachable record but never a pointer to a missing record.

LLM Prompt Example:
    "Show how secondary indexes can be emulated on a plain key-value store with
    content-hashed pointer keys, and how write ordering avoids dangling pointers."
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

from .hasher import hash_key
from ..errors import EncodingError, WriteConflict
from ..storage.base import BaseStorage

log = logging.getLogger(__name__)

RECORD_PREFIX = "link:"
ORIGINAL_PREFIX = "url:"
ALIAS_PREFIX = "alias:"

DEFAULT_MAX_RETRIES = 32


@dataclass
class LinkRecord:
    suffix: str
    original_url: str
    created_at: datetime
    histogram: bytes
    alias: Optional[str] = None
    visit_count: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "original_url": self.original_url,
                "suffix": self.suffix,
                "alias": self.alias,
                "created_at": self.created_at.isoformat(),
                "visit_count": self.visit_count,
                "histogram": base64.b64encode(self.histogram).decode("ascii"),
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> "LinkRecord":
        """
        Parse a persisted record.

        Raises:
            EncodingError: malformed JSON or missing/invalid fields.
        """
        try:
            data = json.loads(raw)
            return cls(
                suffix=data["suffix"],
                original_url=data["original_url"],
                alias=data.get("alias"),
                created_at=datetime.fromisoformat(data["created_at"]),
                visit_count=int(data["visit_count"]),
                histogram=base64.b64decode(data["histogram"], validate=True),
            )
        except (ValueError, KeyError, TypeError, binascii.Error) as exc:
            raise EncodingError(f"Corrupt link record: {exc}") from exc


class LinkRecordStore:
    """Record index over an injected BaseStorage backend."""

    def __init__(self, backend: BaseStorage, max_retries: int = DEFAULT_MAX_RETRIES):
        self.backend = backend
        self.max_retries = max_retries

    # ---------------------------------------------------------------------
    # Lookups
    # ---------------------------------------------------------------------
    def exists(self, suffix: str) -> bool:
        return self.backend.get(RECORD_PREFIX + suffix) is not None

    def get_by_suffix(self, suffix: str) -> Optional[LinkRecord]:
        raw = self.backend.get(RECORD_PREFIX + suffix)
        return LinkRecord.from_json(raw) if raw is not None else None

    def get_by_original(self, url: str) -> Optional[LinkRecord]:
        return self._follow(ORIGINAL_PREFIX + hash_key(url))

    def get_by_alias(self, alias: str) -> Optional[LinkRecord]:
        return self._follow(ALIAS_PREFIX + hash_key(alias))

    def alias_target(self, alias: str) -> Optional[str]:
        """Suffix the alias currently points at, if any."""
        return self.backend.get(ALIAS_PREFIX + hash_key(alias))

    def _follow(self, pointer_key: str) -> Optional[LinkRecord]:
        suffix = self.backend.get(pointer_key)
        if suffix is None:
            return None
        record = self.get_by_suffix(suffix)
        if record is None:
            # Pointers are written after records, so this only happens if the
            # record was removed out from under us.
            log.warning("pointer %s references missing record %s", pointer_key, suffix)
        return record

    # ---------------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------------
    def create_if_absent(self, record: LinkRecord) -> bool:
        """Write a new record unless its suffix is taken."""
        created = self.backend.set_if_absent(RECORD_PREFIX + record.suffix, record.to_json())
        log.debug("create_if_absent %s -> %s", record.suffix, created)
        return created

    def bind_original(self, url: str, suffix: str) -> str:
        """
        Point the URL's hash at `suffix` unless another suffix already owns it.

        Returns:
            str: The suffix the URL maps to after the call.
        """
        key = ORIGINAL_PREFIX + hash_key(url)
        if self.backend.set_if_absent(key, suffix):
            return suffix
        owner = self.backend.get(key)
        return owner if owner is not None else suffix

    def bind_alias(self, alias: str, suffix: str) -> Optional[str]:
        """
        Point the alias' hash at `suffix`.

        Returns:
            Optional[str]: None when the alias is now (or already was) bound to
            `suffix`; otherwise the suffix currently holding the alias.
        """
        key = ALIAS_PREFIX + hash_key(alias)
        if self.backend.set_if_absent(key, suffix):
            return None
        existing = self.backend.get(key)
        if existing is None or existing == suffix:
            return None
        return existing

    def persist(self, record: LinkRecord) -> None:
        """Unconditionally overwrite the record stored under its suffix."""
        self.backend.set(RECORD_PREFIX + record.suffix, record.to_json())

    def update(self, suffix: str, mutate: Callable[[LinkRecord], LinkRecord]) -> Optional[LinkRecord]:
        """
        Apply `mutate` to the stored record with optimistic concurrency.

        The raw stored JSON acts as the version token: the write only lands if
        the record is byte-for-byte what `mutate` saw, otherwise the record is
        re-read and `mutate` runs again. `mutate` must not have side effects
        beyond building the new record, and receives a copy it may modify.

        Returns:
            Optional[LinkRecord]: The record as written, or None if the suffix
            does not exist.

        Raises:
            WriteConflict: every retry lost a race.
        """
        key = RECORD_PREFIX + suffix
        for attempt in range(self.max_retries):
            raw = self.backend.get(key)
            if raw is None:
                return None
            current = LinkRecord.from_json(raw)
            updated = mutate(replace(current))
            if updated.to_json() == raw:
                return updated
            if self.backend.compare_and_set(key, raw, updated.to_json()):
                return updated
            log.debug("update %s lost race (attempt %d)", suffix, attempt + 1)
        raise WriteConflict(f"Gave up updating {suffix} after {self.max_retries} attempts")

    def discard(self, suffix: str) -> bool:
        """Remove an orphan record that no pointer references."""
        return self.backend.delete(RECORD_PREFIX + suffix)
