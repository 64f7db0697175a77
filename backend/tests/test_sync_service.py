"""Sync step: fetch, reconcile, persist."""
from datetime import datetime

import pytest

from inbox_buckets.errors import FetchError, PersistenceError
from inbox_buckets.records import FetchedThread
from inbox_buckets.services.email_store import EmailStore
from inbox_buckets.services.sync_service import run_sync


def _threads(*ids):
    return [FetchedThread(remote_id=i, subject=f"S {i}", sender="x@y.z", preview="p", date=datetime(2024, 1, 1)) for i in ids]


def test_first_sync_stores_everything(db_session):
    store = EmailStore(db_session)
    report = run_sync(store, "u1", lambda: _threads("a", "b"))
    assert report.new_ids == ["a", "b"]
    assert report.existing_ids == []
    assert {e.id for e in store.list_emails("u1")} == {"a", "b"}
    assert all(e.bucket_id is None for e in store.list_emails("u1"))


def test_second_sync_only_adds_new_threads(db_session):
    store = EmailStore(db_session)
    run_sync(store, "u1", lambda: _threads("a", "b"))
    report = run_sync(store, "u1", lambda: _threads("b", "c", "c"))
    assert report.new_ids == ["c"]
    assert report.existing_ids == ["b"]
    assert store.get_known_ids("u1") == {"a", "b", "c"}


def test_empty_fetch(db_session):
    report = run_sync(EmailStore(db_session), "u1", lambda: [])
    assert report.new_ids == [] and report.warnings == []


def test_fetch_error_propagates(db_session):
    def fetch():
        raise FetchError("unreachable")

    with pytest.raises(FetchError):
        run_sync(EmailStore(db_session), "u1", fetch)


def test_persistence_failure_becomes_warning(db_session, monkeypatch):
    store = EmailStore(db_session)

    def fail(*args, **kwargs):
        raise PersistenceError("Failed to save email data: disk full")

    monkeypatch.setattr(store, "upsert_emails", fail)
    report = run_sync(store, "u1", lambda: _threads("a"))
    assert report.new_ids == []
    assert report.warnings == ["Failed to save email data: disk full"]
