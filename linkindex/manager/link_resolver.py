"""
LinkResolver module for linkindex.

Responsibilities:
    - Create-or-fetch link records (idempotent by original URL)
    - Bind optional aliases without ever stealing one from another record
    - Resolve a token (suffix first, alias second) and record the visit
    - Produce per-link stats from the visit histogram

Design notes:
    - Validation happens before any backend access.
    - New records are persisted with create-if-absent; losing that write means
      the suffix appeared between check and write, so generation restarts.
    - Concurrent creations of the same URL race on the original-URL pointer.
      The loser discards its orphan record and returns the winner's record.
    - Visit recording goes through LinkRecordStore.update, so visit_count and
      the histogram change in one compare-and-set write, or not at all.
    - A visit that loses every update race is reported as a write conflict
      and the redirect proceeds.
    - A visit outside the histogram window is reported to the analytics sink
      and the redirect proceeds ("reject" policy), or the window is widened by
      whole windows until the visit fits ("extend" policy).

LLM Prompt Example:
    "Show how optimistic concurrency on a single key prevents lost updates
    when many redirects increment the same link's counters at once."
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlparse

from ..analytics.analytics import Analytics
from ..analytics.base import BaseAnalytics
from ..config import settings
from ..errors import AliasInUse, BackendUnavailable, InvalidInput, NotFound, OutOfRangeValue, WriteConflict
from ..index.records import LinkRecord, LinkRecordStore
from ..stats.histogram import Distribution, VisitHistogram, to_epoch
from .suffix import SuffixGenerator

log = logging.getLogger(__name__)

AliasPattern = re.compile(r"^[0-9a-zA-Z_-]+$")
MAX_ALIAS_LENGTH = 32

OVERFLOW_REJECT = "reject"
OVERFLOW_EXTEND = "extend"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LinkStats:
    suffix: str
    alias: Optional[str]
    original_url: str
    created_at: datetime
    visit_count: int
    encoded: bytes
    histogram: VisitHistogram

    def distribution(self, include_empty: bool = False) -> Distribution:
        return self.histogram.distribution(include_empty=include_empty)


class LinkResolver:
    """
    Coordinates creation, alias binding, redirects and stats.

    LLM Prompt Example:
        "Explain how create-if-absent writes and write ordering give idempotent,
        race-safe creation on a store without transactions."
    """

    def __init__(
        self,
        store: LinkRecordStore,
        analytics: Optional[BaseAnalytics] = None,
        generator: Optional[SuffixGenerator] = None,
        window: timedelta = timedelta(days=30),
        precision: int = 3,
        overflow: str = OVERFLOW_REJECT,
        clock: Optional[Clock] = None,
    ):
        if overflow not in (OVERFLOW_REJECT, OVERFLOW_EXTEND):
            raise ValueError(f"Unknown overflow policy: {overflow!r}")
        if window < timedelta(seconds=1):
            raise ValueError("Histogram window must be at least one second")
        self.store = store
        self.analytics = analytics if analytics is not None else Analytics()
        self.generator = generator or SuffixGenerator()
        self.window = window
        self.precision = precision
        self.overflow = overflow
        self.clock = clock or _utcnow

    @classmethod
    def from_settings(cls, store: LinkRecordStore, analytics: Optional[BaseAnalytics] = None) -> "LinkResolver":
        return cls(
            store,
            analytics=analytics,
            generator=SuffixGenerator(num_bytes=settings.SUFFIX_BYTES),
            window=timedelta(days=settings.HIST_WINDOW_DAYS),
            precision=settings.HIST_PRECISION,
            overflow=settings.HIST_OVERFLOW,
        )

    # ---------------------------------------------------------------------
    # Validation Helpers
    # ---------------------------------------------------------------------
    def _validate_url(self, url: str) -> None:
        """
        Validate that a URL is non-empty with an http/https scheme and a netloc.

        Raises:
            InvalidInput: If the URL is empty or malformed.
        """
        if not url or not url.strip():
            raise InvalidInput("URL is required")
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise InvalidInput("Invalid URL format")

    def _validate_alias(self, alias: str) -> None:
        if len(alias) > MAX_ALIAS_LENGTH:
            raise InvalidInput("Alias too long")
        if not AliasPattern.match(alias):
            raise InvalidInput("Alias must contain only 0-9a-zA-Z_-")

    def _alias_conflict(self, alias: str, suffix: Optional[str]) -> Optional[str]:
        """Suffix that blocks `alias` for the record `suffix`, if any."""
        if alias != suffix and self.store.exists(alias):
            # Redirects try suffixes first, so this alias would be shadowed.
            return alias
        target = self.store.alias_target(alias)
        if target is not None and target != suffix:
            return target
        return None

    # ---------------------------------------------------------------------
    # Create-or-fetch
    # ---------------------------------------------------------------------
    def create_or_fetch(self, url: str, alias: Optional[str] = None) -> LinkRecord:
        """
        Return the record for `url`, creating it on first sight.

        Rules:
            - Same URL always yields the same suffix.
            - A supplied alias is bound to the record unless it already points
              at another record (AliasInUse); binding a different alias to an
              existing record replaces the record's alias field while older
              alias pointers keep resolving.

        Raises:
            InvalidInput, AliasInUse, BackendUnavailable
        """
        self._validate_url(url)
        alias = alias or None
        if alias is not None:
            self._validate_alias(alias)

        record = self.store.get_by_original(url)
        if record is None:
            if alias is not None:
                blocking = self._alias_conflict(alias, None)
                if blocking is not None:
                    raise AliasInUse(alias, blocking)
            record = self._create(url, alias)
        else:
            log.debug("reusing %s for %s", record.suffix, url)

        if alias is None:
            return record
        return self._attach_alias(record, alias)

    def _create(self, url: str, alias: Optional[str]) -> LinkRecord:
        while True:
            suffix = self.generator.generate(self.store.exists)
            now = self.clock()
            hist = VisitHistogram.init(now, now + self.window, self.precision)
            record = LinkRecord(
                suffix=suffix,
                original_url=url,
                alias=alias,
                created_at=now,
                histogram=hist.encode(),
            )
            if self.store.create_if_absent(record):
                break
            log.info("suffix %s taken between check and write; regenerating", suffix)

        owner = self.store.bind_original(url, suffix)
        if owner == suffix:
            log.info("created %s -> %s", suffix, url)
            return record

        # Another request created this URL first.
        self.store.discard(suffix)
        winner = self.store.get_by_suffix(owner)
        if winner is None:
            raise BackendUnavailable(f"Record {owner} for {url} is not readable yet")
        log.info("lost creation race for %s; using %s", url, owner)
        return winner

    def _attach_alias(self, record: LinkRecord, alias: str) -> LinkRecord:
        blocking = self._alias_conflict(alias, record.suffix)
        if blocking is None:
            blocking = self.store.bind_alias(alias, record.suffix)
        if blocking is not None:
            if record.alias == alias:
                self.store.update(record.suffix, lambda r: self._clear_alias(r, alias))
            raise AliasInUse(alias, blocking)

        if record.alias == alias:
            return record

        def set_alias(r: LinkRecord) -> LinkRecord:
            r.alias = alias
            return r

        return self.store.update(record.suffix, set_alias) or record

    @staticmethod
    def _clear_alias(record: LinkRecord, alias: str) -> LinkRecord:
        if record.alias == alias:
            record.alias = None
        return record

    # ---------------------------------------------------------------------
    # Redirect & stats
    # ---------------------------------------------------------------------
    def lookup(self, token: str) -> LinkRecord:
        """Record for a suffix or alias; suffix wins."""
        record = self.store.get_by_suffix(token) if token else None
        if record is None and token:
            record = self.store.get_by_alias(token)
        if record is None:
            self.analytics.report(token, "not_found")
            raise NotFound(token)
        return record

    def visit(self, token: str) -> LinkRecord:
        """Count a visit on `token` and return the record as it now stands."""
        record = self.lookup(token)
        return self.record_visit(record.suffix) or record

    def resolve(self, token: str) -> str:
        """Return the original URL for `token` and count the visit."""
        return self.visit(token).original_url

    def record_visit(self, suffix: str, when: Optional[datetime] = None) -> Optional[LinkRecord]:
        """
        Count one visit on `suffix`.

        Returns:
            Optional[LinkRecord]: The updated record, or None when the visit
            fell outside the window or lost every update race and was
            reported instead.

        Raises:
            EncodingError: the stored histogram is corrupt; nothing is written.
        """
        now = when or self.clock()

        def mutate(record: LinkRecord) -> LinkRecord:
            hist = VisitHistogram.decode(record.histogram)
            if self.overflow == OVERFLOW_EXTEND and to_epoch(now) > hist.window_end:
                self._widen(hist, now)
            hist.record(now)
            record.histogram = hist.encode()
            record.visit_count += 1
            return record

        try:
            return self.store.update(suffix, mutate)
        except OutOfRangeValue as exc:
            self.analytics.report(suffix, "out_of_range", str(exc))
            return None
        except WriteConflict as exc:
            # Nothing was written, so visit_count and the histogram still agree.
            self.analytics.report(suffix, "write_conflict", str(exc))
            return None

    def _widen(self, hist: VisitHistogram, now: datetime) -> None:
        step = int(self.window.total_seconds())
        missing = to_epoch(now) - hist.window_end
        periods = -(-missing // step)
        hist.extend(hist.window_end + periods * step)
        log.info("widened histogram window by %d period(s)", periods)

    def stats(self, token: str) -> LinkStats:
        record = self.lookup(token)
        return LinkStats(
            suffix=record.suffix,
            alias=record.alias,
            original_url=record.original_url,
            created_at=record.created_at,
            visit_count=record.visit_count,
            encoded=record.histogram,
            histogram=VisitHistogram.decode(record.histogram),
        )
