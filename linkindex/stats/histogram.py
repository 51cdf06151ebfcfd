"""
VisitHistogram – bounded, log-bucketed visit counter for a single link.

Responsibilities:
    - Count visit timestamps inside a fixed time window
    - Keep the serialized size bounded no matter how popular a link gets
    - Round-trip losslessly through a compact binary encoding
    - Expose the bucket distribution for stats export

Layout:
    Timestamps are stored as whole seconds offset from `window_start`. Offsets
    are bucketed the way HdrHistogram does it: the precision (significant
    digits) fixes a sub-bucket count, bucket 0 resolves single seconds, and
    every following bucket doubles its width while keeping the same number of
    sub-buckets. Relative error therefore stays below 10**-precision across the
    whole window, and the number of possible buckets only grows with the log of
    the window length.

    Only non-zero counts are kept (a sparse dict of bucket index -> count), so
    a fresh histogram encodes to a few dozen bytes.

Encoding:
    COOKIE (4 bytes) + zlib(header + entries)
        header  = precision (u8), window_start (i64), window_end (i64), entries (u32)
        entries = (index delta, count) pairs as unsigned LEB128 varints,
                  indices strictly ascending

LLM Prompt Example:
    "Explain why log-sized buckets with a fixed significant-digit precision keep
    a time-series counter's storage constant while bounding relative error."
"""

import math
import struct
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Tuple, Union

from ..errors import EncodingError, OutOfRangeValue

Timestamp = Union[datetime, int, float]

COOKIE = b"LXH\x01"
_HEADER = struct.Struct(">BqqI")

MIN_PRECISION = 1
MAX_PRECISION = 5


def to_epoch(ts: Timestamp) -> int:
    """Whole epoch seconds for a datetime or number. Naive datetimes are UTC."""
    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return math.floor(ts.timestamp())
    return math.floor(ts)


def _from_epoch(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _put_varint(out: bytearray, n: int) -> None:
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return


def _get_varint(buf: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    n = 0
    while True:
        if pos >= len(buf):
            raise EncodingError("Truncated histogram payload")
        byte = buf[pos]
        pos += 1
        n |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return n, pos
        shift += 7
        if shift > 63:
            raise EncodingError("Varint too long")


@dataclass(frozen=True)
class Bucket:
    """One histogram bucket; `end` is exclusive."""
    start: datetime
    end: datetime
    count: int


class Distribution:
    """
    Time-ordered buckets of a histogram.

    Iterable any number of times; each iteration walks the buckets afresh.
    With `include_empty=False` only buckets holding visits are produced.
    """

    def __init__(self, histogram: "VisitHistogram", include_empty: bool = False):
        self.histogram = histogram
        self.include_empty = include_empty

    def __iter__(self) -> Iterator[Bucket]:
        h = self.histogram
        span = h.window_end - h.window_start
        if self.include_empty:
            indices = range(h.counts_len)
        else:
            indices = sorted(h.counts)
        for idx in indices:
            lowest, width = h.bucket_bounds(idx)
            if lowest > span:
                break
            yield Bucket(
                start=_from_epoch(h.window_start + lowest),
                end=_from_epoch(h.window_start + min(lowest + width, span + 1)),
                count=h.counts.get(idx, 0),
            )


@dataclass
class VisitHistogram:
    window_start: int
    window_end: int
    precision: int
    counts: Dict[int, int] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.precision, int) or not MIN_PRECISION <= self.precision <= MAX_PRECISION:
            raise ValueError(f"precision must be an int in [{MIN_PRECISION}, {MAX_PRECISION}]")
        if self.window_end <= self.window_start:
            raise ValueError("window_end must be after window_start")
        # 2 * 10**precision values at unit resolution, rounded up to a power of two
        sub_bucket_magnitude = (2 * 10 ** self.precision - 1).bit_length()
        self._half_magnitude = sub_bucket_magnitude - 1
        self._half_count = 1 << self._half_magnitude
        self._sub_bucket_mask = (1 << sub_bucket_magnitude) - 1

    @classmethod
    def init(cls, window_start: Timestamp, window_end: Timestamp, precision: int = 3) -> "VisitHistogram":
        """Allocate an empty histogram spanning [window_start, window_end]."""
        return cls(to_epoch(window_start), to_epoch(window_end), precision)

    # ------------------------------------------------------------------
    # Bucket arithmetic
    # ------------------------------------------------------------------
    def bucket_index(self, offset: int) -> int:
        """Bucket index for an offset (seconds since window_start)."""
        bucket = (offset | self._sub_bucket_mask).bit_length() - (self._half_magnitude + 1)
        sub_bucket = offset >> bucket
        return ((bucket + 1) << self._half_magnitude) + (sub_bucket - self._half_count)

    def bucket_bounds(self, index: int) -> Tuple[int, int]:
        """(lowest offset, width in seconds) of the bucket at `index`."""
        bucket = (index >> self._half_magnitude) - 1
        sub_bucket = (index & (self._half_count - 1)) + self._half_count
        if bucket < 0:
            sub_bucket -= self._half_count
            bucket = 0
        return sub_bucket << bucket, 1 << bucket

    @property
    def counts_len(self) -> int:
        """Number of bucket slots needed to cover the current window."""
        return self.bucket_index(self.window_end - self.window_start) + 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def covers(self, ts: Timestamp) -> bool:
        return self.window_start <= to_epoch(ts) <= self.window_end

    def record(self, ts: Timestamp, count: int = 1) -> None:
        """
        Count `count` visits at `ts`.

        Raises:
            OutOfRangeValue: `ts` is outside the window; nothing is recorded.
        """
        if count < 1:
            raise ValueError("count must be positive")
        epoch = to_epoch(ts)
        if not self.window_start <= epoch <= self.window_end:
            raise OutOfRangeValue(
                f"Timestamp {epoch} outside window [{self.window_start}, {self.window_end}]"
            )
        idx = self.bucket_index(epoch - self.window_start)
        self.counts[idx] = self.counts.get(idx, 0) + count

    def extend(self, window_end: Timestamp) -> None:
        """Move the window end later. Recorded counts keep their buckets."""
        end = to_epoch(window_end)
        if end < self.window_end:
            raise ValueError("A histogram window can only grow")
        self.window_end = end

    def distribution(self, include_empty: bool = False) -> Distribution:
        return Distribution(self, include_empty=include_empty)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------
    def encode(self) -> bytes:
        payload = bytearray(_HEADER.pack(self.precision, self.window_start, self.window_end, len(self.counts)))
        previous = -1
        for idx in sorted(self.counts):
            _put_varint(payload, idx - previous)
            _put_varint(payload, self.counts[idx])
            previous = idx
        return COOKIE + zlib.compress(bytes(payload))

    @classmethod
    def decode(cls, blob: bytes) -> "VisitHistogram":
        """
        Rebuild a histogram from `encode()` output.

        Raises:
            EncodingError: wrong cookie, corrupt compression, truncated or
                inconsistent payload.
        """
        if not isinstance(blob, (bytes, bytearray)) or not blob.startswith(COOKIE):
            raise EncodingError("Not an encoded visit histogram")
        try:
            payload = zlib.decompress(blob[len(COOKIE):])
        except zlib.error as exc:
            raise EncodingError(f"Corrupt histogram payload: {exc}") from exc
        if len(payload) < _HEADER.size:
            raise EncodingError("Truncated histogram header")
        precision, start, end, entries = _HEADER.unpack_from(payload)
        try:
            hist = cls(start, end, precision)
        except ValueError as exc:
            raise EncodingError(str(exc)) from exc

        pos = _HEADER.size
        idx = -1
        limit = hist.counts_len
        for _ in range(entries):
            delta, pos = _get_varint(payload, pos)
            count, pos = _get_varint(payload, pos)
            idx += delta
            if delta == 0 or count == 0 or idx >= limit:
                raise EncodingError("Inconsistent histogram entry")
            hist.counts[idx] = count
        if pos != len(payload):
            raise EncodingError("Trailing bytes after histogram entries")
        return hist
