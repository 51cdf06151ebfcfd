"""
Storage module for linkindex (in-memory implementation).

Responsibilities:
    - Keep string values under string keys
    - Provide the atomic create-if-absent and compare-and-set primitives

Design:
    - This is an in-memory reference implementation of the BaseStorage contract.
    - A single lock makes every primitive atomic, so the threaded race tests
      exercise the same guarantees a real backend gives.
    - For production, use the Postgres or Redis backend.

LLM Prompt Example:
    "Explain how this in-memory storage can be swapped for a database-backed layer
     (Postgres/Redis) without changing the resolver or API code, by adhering to a
     narrow, explicit BaseStorage interface."
"""

import threading
from typing import Dict, Optional

from .base import BaseStorage


class Storage(BaseStorage):
    def __init__(self):
        """
        Initialize an empty key space.

        Internal schema:
            self.data = {key: value}
        """
        self.data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self.data[key] = value

    def set_if_absent(self, key: str, value: str) -> bool:
        """
        Create `key` only if it is missing.

        Returns:
            bool: True if created, False if the key already existed.
        """
        with self._lock:
            if key in self.data:
                return False
            self.data[key] = value
            return True

    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        """
        Swap the value only if it still equals `expected`.

        LLM Prompt Example:
            "Explain optimistic concurrency and how a version check
             prevents lost updates under concurrent read-modify-write."
        """
        with self._lock:
            if self.data.get(key) != expected:
                return False
            self.data[key] = value
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self.data.pop(key, None) is not None
