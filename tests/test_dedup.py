"""
Tests for content-hash deduplication.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from sheetchat.core.dedup import DeduplicationEngine
from sheetchat.core.ingest import build_file_record
from sheetchat.exceptions import FileInUseException, FileNotFoundException

from conftest import SALES_CSV, add_file

OTHER_CSV = b"region,amount\nnorth,1\n"


@pytest.fixture
def dedup(store):
    return DeduplicationEngine(store)


def test_same_bytes_different_names_grouped(store, dedup):
    a = add_file(store, SALES_CSV, "sales.csv")
    b = add_file(store, SALES_CSV, "sales (1).csv")
    add_file(store, OTHER_CSV, "other.csv")

    groups = dedup.find_duplicates()

    assert len(groups) == 1
    assert groups[0].file_ids == (a.id, b.id)
    assert groups[0].content_hash == a.content_hash


def test_no_duplicates(store, dedup):
    add_file(store, SALES_CSV, "sales.csv")
    add_file(store, OTHER_CSV, "other.csv")

    assert dedup.find_duplicates() == []
    assert dedup.deduplicate("newest") == []


def test_keep_newest(store, dedup):
    a = add_file(store, SALES_CSV, "a.csv")
    b = add_file(store, SALES_CSV, "b.csv")
    c = add_file(store, SALES_CSV, "c.csv")

    deleted = dedup.deduplicate("newest")

    assert deleted == [a.id, b.id]
    assert [r.id for r in store.list()] == [c.id]


def test_keep_oldest(store, dedup):
    a = add_file(store, SALES_CSV, "a.csv")
    b = add_file(store, SALES_CSV, "b.csv")
    other = add_file(store, OTHER_CSV, "other.csv")
    c = add_file(store, SALES_CSV, "c.csv")

    deleted = dedup.deduplicate("oldest")

    assert deleted == [b.id, c.id]
    assert [r.id for r in store.list()] == [a.id, other.id]


def test_idempotent(store, dedup):
    add_file(store, SALES_CSV, "a.csv")
    add_file(store, SALES_CSV, "b.csv")
    add_file(store, OTHER_CSV, "c.csv")
    add_file(store, OTHER_CSV, "d.csv")

    assert len(dedup.deduplicate("newest")) == 2
    assert dedup.deduplicate("newest") == []
    assert dedup.find_duplicates() == []


def test_equal_timestamps_fall_back_to_upload_sequence(store, dedup):
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = replace(build_file_record(SALES_CSV, "x.csv"), uploaded_at=stamp, sequence=store.next_sequence())
    second = replace(build_file_record(SALES_CSV, "y.csv"), uploaded_at=stamp, sequence=store.next_sequence())
    store.put(second)
    store.put(first)

    [group] = dedup.find_duplicates("newest")

    assert group.file_ids == (first.id, second.id)
    assert group.keep_id == second.id
    assert dedup.find_duplicates("oldest")[0].keep_id == first.id


def test_in_use_file_blocks_dedup(store, dedup):
    a = add_file(store, SALES_CSV, "a.csv")
    add_file(store, SALES_CSV, "b.csv")

    with store.reading(a.id):
        with pytest.raises(FileInUseException) as exc:
            dedup.deduplicate("newest")
        assert exc.value.code == "FILE_IN_USE"
        assert len(store.list()) == 2

    assert dedup.deduplicate("newest") == [a.id]


def test_unknown_policy(dedup):
    with pytest.raises(ValueError):
        dedup.deduplicate("largest")


def test_concurrent_delete_waits_for_dedup(store, dedup):
    a = add_file(store, SALES_CSV, "a.csv")
    b = add_file(store, SALES_CSV, "b.csv")
    c = add_file(store, SALES_CSV, "c.csv")
    errors: list[Exception] = []

    def delete_b():
        try:
            store.delete(b.id)
        except FileNotFoundException as e:
            errors.append(e)

    original = dedup.find_duplicates
    other = threading.Thread(target=delete_b)

    def find_then_race(policy="newest"):
        groups = original(policy)
        other.start()
        other.join(timeout=0.2)
        # the competing delete cannot land between grouping and deletion
        assert other.is_alive()
        return groups

    dedup.find_duplicates = find_then_race

    assert dedup.deduplicate("newest") == [a.id, b.id]
    other.join(timeout=2)
    assert [r.id for r in store.list()] == [c.id]
    assert [e.code for e in errors] == ["FILE_NOT_FOUND"]
