"""
Random, URL-safe suffixes for new link records.

A suffix is `num_bytes` bytes from the OS CSPRNG, base64url-encoded without
padding. With the default 8 bytes the space is 2**64, so the birthday bound
stays negligible for any realistic number of links and the collision check
below essentially never loops.

The `exists` check is advisory. Two callers can draw the same candidate and
both see it free; the resolver therefore persists with create-if-absent and
calls `generate` again when that write loses.
"""

import base64
import logging
import secrets
from typing import Callable

from ..errors import BackendUnavailable

log = logging.getLogger(__name__)

MIN_BYTES = 8


class SuffixGenerator:
    def __init__(self, num_bytes: int = MIN_BYTES, max_attempts: int = 16):
        if num_bytes < MIN_BYTES:
            raise ValueError(f"num_bytes must be at least {MIN_BYTES}")
        self.num_bytes = num_bytes
        self.max_attempts = max_attempts

    @property
    def length(self) -> int:
        """Characters per suffix (unpadded base64)."""
        return -(-self.num_bytes * 4 // 3)

    def candidate(self) -> str:
        raw = secrets.token_bytes(self.num_bytes)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def generate(self, exists: Callable[[str], bool]) -> str:
        """
        Draw candidates until one is not taken according to `exists`.

        Raises:
            BackendUnavailable: `max_attempts` candidates in a row were taken,
                which points at a broken backend or RNG rather than bad luck.
        """
        for attempt in range(self.max_attempts):
            suffix = self.candidate()
            if not exists(suffix):
                return suffix
            log.warning("suffix collision on %s (attempt %d)", suffix, attempt + 1)
        raise BackendUnavailable(f"No free suffix after {self.max_attempts} attempts")
