"""
Unit tests for SuffixGenerator.

Covers:
    - URL-safe alphabet and fixed length per byte count
    - Minimum entropy enforcement
    - Regeneration on collision and bounded attempts
"""

import re

import pytest

from linkindex.errors import BackendUnavailable
from linkindex.manager.suffix import SuffixGenerator

UrlSafe = re.compile(r"^[A-Za-z0-9_-]+$")


def test_default_suffix_is_11_url_safe_chars():
    gen = SuffixGenerator()
    suffix = gen.generate(lambda s: False)
    assert len(suffix) == gen.length == 11
    assert UrlSafe.match(suffix)


@pytest.mark.parametrize("num_bytes,length", [(8, 11), (9, 12), (12, 16), (16, 22)])
def test_length_follows_byte_count(num_bytes, length):
    gen = SuffixGenerator(num_bytes=num_bytes)
    assert gen.length == length
    assert len(gen.candidate()) == length


def test_rejects_fewer_than_8_bytes():
    with pytest.raises(ValueError):
        SuffixGenerator(num_bytes=4)


def test_candidates_differ():
    gen = SuffixGenerator()
    assert len({gen.candidate() for _ in range(1000)}) == 1000


def test_regenerates_on_collision(monkeypatch):
    gen = SuffixGenerator()
    draws = iter(["taken", "taken", "free"])
    monkeypatch.setattr(gen, "candidate", lambda: next(draws))
    seen = []

    def exists(s):
        seen.append(s)
        return s == "taken"

    assert gen.generate(exists) == "free"
    assert seen == ["taken", "taken", "free"]


def test_gives_up_after_max_attempts():
    gen = SuffixGenerator(max_attempts=3)
    calls = []

    def exists(s):
        calls.append(s)
        return True

    with pytest.raises(BackendUnavailable):
        gen.generate(exists)
    assert len(calls) == 3
