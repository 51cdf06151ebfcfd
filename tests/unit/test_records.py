"""
Unit tests for LinkRecord and LinkRecordStore.

Covers:
    - JSON layout and corrupt record handling
    - Key spaces (record, original pointer, alias pointer)
    - create_if_absent / bind_original / bind_alias conditional semantics
    - Optimistic update loop (retry on lost race, give up after max retries)
"""

import json
from datetime import datetime, timezone

import pytest

from linkindex.errors import EncodingError, WriteConflict
from linkindex.index.hasher import hash_key
from linkindex.index.records import LinkRecord, LinkRecordStore
from linkindex.storage.storage import Storage

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_record(suffix="AbCdEfGhIjk", url="https://example.com/", alias=None):
    return LinkRecord(suffix=suffix, original_url=url, alias=alias, created_at=T0, histogram=b"\x00\x01hist")


# -------------------------
# LinkRecord
# -------------------------

def test_record_json_layout():
    data = json.loads(make_record(alias="ex").to_json())
    assert data == {
        "original_url": "https://example.com/",
        "suffix": "AbCdEfGhIjk",
        "alias": "ex",
        "created_at": "2024-03-01T12:00:00+00:00",
        "visit_count": 0,
        "histogram": "AAFoaXN0",
    }


def test_record_json_round_trip():
    record = make_record(alias="ex")
    record.visit_count = 7
    assert LinkRecord.from_json(record.to_json()) == record


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "{}",
        json.dumps({"suffix": "a", "original_url": "u", "created_at": "yesterday",
                    "visit_count": 0, "histogram": ""}),
        json.dumps({"suffix": "a", "original_url": "u", "created_at": "2024-03-01T12:00:00",
                    "visit_count": 0, "histogram": "***"}),
    ],
)
def test_corrupt_record_raises_encoding_error(raw):
    with pytest.raises(EncodingError):
        LinkRecord.from_json(raw)


# -------------------------
# Lookups & key spaces
# -------------------------

def test_create_and_get_by_suffix(store, storage):
    record = make_record()
    assert store.create_if_absent(record) is True
    assert store.get_by_suffix(record.suffix) == record
    assert "link:AbCdEfGhIjk" in storage.data


def test_create_if_absent_refuses_existing_suffix(store):
    assert store.create_if_absent(make_record(url="https://one.example/")) is True
    assert store.create_if_absent(make_record(url="https://two.example/")) is False
    assert store.get_by_suffix("AbCdEfGhIjk").original_url == "https://one.example/"


def test_missing_lookups_return_none(store):
    assert store.get_by_suffix("nope") is None
    assert store.get_by_original("https://nope.example/") is None
    assert store.get_by_alias("nope") is None
    assert store.exists("nope") is False


def test_original_pointer_is_hashed(store, storage):
    record = make_record()
    store.create_if_absent(record)
    assert store.bind_original(record.original_url, record.suffix) == record.suffix
    assert storage.data["url:" + hash_key(record.original_url)] == record.suffix
    assert store.get_by_original(record.original_url) == record


def test_bind_original_returns_existing_owner(store):
    assert store.bind_original("https://example.com/", "first") == "first"
    assert store.bind_original("https://example.com/", "second") == "first"


def test_bind_alias_ok_idempotent_and_conflict(store, storage):
    assert store.bind_alias("ex", "suffix1") is None
    assert store.bind_alias("ex", "suffix1") is None
    assert store.bind_alias("ex", "suffix2") == "suffix1"
    assert storage.data["alias:" + hash_key("ex")] == "suffix1"
    assert store.alias_target("ex") == "suffix1"


def test_get_by_alias_follows_pointer(store):
    record = make_record(alias="ex")
    store.create_if_absent(record)
    store.bind_alias("ex", record.suffix)
    assert store.get_by_alias("ex") == record


def test_dangling_pointer_reads_as_missing(store, storage):
    storage.set("alias:" + hash_key("ghost"), "gone")
    assert store.get_by_alias("ghost") is None


def test_persist_overwrites(store):
    record = make_record()
    store.create_if_absent(record)
    record.visit_count = 3
    store.persist(record)
    assert store.get_by_suffix(record.suffix).visit_count == 3


def test_discard_removes_record(store):
    record = make_record()
    store.create_if_absent(record)
    assert store.discard(record.suffix) is True
    assert store.get_by_suffix(record.suffix) is None


# -------------------------
# Optimistic update
# -------------------------

def _bump(record):
    record.visit_count += 1
    return record


def test_update_applies_mutation(store):
    store.create_if_absent(make_record())
    updated = store.update("AbCdEfGhIjk", _bump)
    assert updated.visit_count == 1
    assert store.get_by_suffix("AbCdEfGhIjk").visit_count == 1


def test_update_missing_returns_none(store):
    assert store.update("nope", _bump) is None


def test_update_retries_after_lost_race(storage):
    store = LinkRecordStore(storage)
    store.create_if_absent(make_record())
    interfered = []

    def mutate(record):
        if not interfered:
            # A concurrent writer lands between our read and our write.
            other = store.get_by_suffix(record.suffix)
            other.visit_count += 10
            store.persist(other)
            interfered.append(True)
        return _bump(record)

    updated = store.update("AbCdEfGhIjk", mutate)
    assert updated.visit_count == 11
    assert store.get_by_suffix("AbCdEfGhIjk").visit_count == 11


class AlwaysLosingStorage(Storage):
    def compare_and_set(self, key, expected, value):
        return False


def test_update_gives_up_after_max_retries():
    store = LinkRecordStore(AlwaysLosingStorage(), max_retries=3)
    store.create_if_absent(make_record())
    with pytest.raises(WriteConflict):
        store.update("AbCdEfGhIjk", _bump)
    assert store.get_by_suffix("AbCdEfGhIjk").visit_count == 0


def test_update_noop_skips_write():
    store = LinkRecordStore(AlwaysLosingStorage())
    store.create_if_absent(make_record())
    assert store.update("AbCdEfGhIjk", lambda r: r) == make_record()
