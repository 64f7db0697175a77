"""Unit tests for diffing fetched threads against stored ids."""
from datetime import datetime, timedelta, timezone

from inbox_buckets.records import FetchedThread
from inbox_buckets.services.sync_reconciler import dedupe_threads, reconcile

NOW = datetime(2024, 5, 1, 12, 0, 0)


def _thread(tid, subject="s"):
    return FetchedThread(remote_id=tid, subject=subject, sender="x@example.com", preview="p", date=datetime(2024, 4, 1))


def test_reconcile_splits_new_and_known():
    plan = reconcile([_thread("a"), _thread("b"), _thread("c")], {"b"}, now=NOW)
    assert [r.id for r in plan.new_records] == ["a", "c"]
    assert plan.existing_ids == ["b"]


def test_new_records_are_unclassified_and_stamped():
    plan = reconcile([_thread("a", subject="Hello")], set(), now=NOW)
    (rec,) = plan.new_records
    assert rec.bucket_id is None
    assert rec.last_synced_at == NOW
    assert rec.subject == "Hello"
    assert rec.sent_at == datetime(2024, 4, 1)


def test_empty_fetch_is_not_an_error():
    plan = reconcile([], {"a", "b"}, now=NOW)
    assert plan.new_records == []
    assert plan.existing_ids == []


def test_duplicate_ids_collapse_last_seen_wins():
    threads = [_thread("a", subject="old"), _thread("b"), _thread("a", subject="new")]
    deduped = dedupe_threads(threads)
    assert [t.remote_id for t in deduped] == ["a", "b"]
    assert deduped[0].subject == "new"

    plan = reconcile(threads, set(), now=NOW)
    assert [r.id for r in plan.new_records] == ["a", "b"]
    assert plan.new_records[0].subject == "new"


def test_all_known_yields_no_work():
    plan = reconcile([_thread("a"), _thread("b")], {"a", "b", "z"}, now=NOW)
    assert plan.new_records == []
    assert sorted(plan.existing_ids) == ["a", "b"]


def test_reconcile_does_not_mutate_inputs():
    known = {"a"}
    threads = [_thread("a"), _thread("b")]
    reconcile(threads, known, now=NOW)
    assert known == {"a"}
    assert len(threads) == 2


def test_default_stamp_is_naive_utc():
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    (rec,) = reconcile([_thread("a")], set()).new_records
    assert rec.last_synced_at.tzinfo is None
    assert before <= rec.last_synced_at <= before + timedelta(seconds=5)
