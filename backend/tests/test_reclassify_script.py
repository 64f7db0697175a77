"""scripts/reclassify_emails.py end to end against an in-memory DB."""
import importlib.util
import os
import sys

import pytest
from sqlalchemy.orm import sessionmaker

from inbox_buckets.records import EmailRecord
from inbox_buckets.services import classification_service
from inbox_buckets.services.email_store import EmailStore

SCRIPT = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "scripts", "reclassify_emails.py")


@pytest.fixture
def script(db_engine, monkeypatch, make_classifier):
    loader = importlib.util.spec_from_file_location("reclassify_emails", SCRIPT)
    module = importlib.util.module_from_spec(loader)
    loader.loader.exec_module(module)
    monkeypatch.setattr(module, "SessionLocal", sessionmaker(bind=db_engine))
    monkeypatch.setattr(module, "init_db", lambda: None)
    monkeypatch.setattr(classification_service, "_default_classifier", lambda: make_classifier())

    def run(*argv):
        monkeypatch.setattr(sys, "argv", ["reclassify_emails.py", *argv])
        return module.main()

    return run


def test_dry_run_reports_unknown_bucket_and_saves_nothing(script, db_session, capsys):
    store = EmailStore(db_session)
    store.ensure_default_buckets("u1", names=["Work"])
    store.upsert_emails("u1", [EmailRecord(id="a")])

    assert script("--user-id", "u1", "--bucket-id", "nope", "--dry-run") == 0
    out = capsys.readouterr()
    assert "Ignoring unknown bucket ids: nope" in out.err
    assert "1 classified" in out.out
    assert "dry run" in out.out
    db_session.expire_all()
    assert store.list_emails("u1")[0].bucket_id is None


def test_saves_assignments(script, db_session):
    store = EmailStore(db_session)
    (work,) = store.ensure_default_buckets("u1", names=["Work"])
    store.upsert_emails("u1", [EmailRecord(id="a")])

    assert script("--user-id", "u1") == 0
    db_session.expire_all()
    assert store.list_emails("u1")[0].bucket_id == work.id


def test_unknown_bucket_name_is_rejected(script, db_session, capsys):
    EmailStore(db_session).ensure_default_buckets("u1", names=["Work"])
    assert script("--user-id", "u1", "--bucket-name", "Travel") == 1
    assert "No bucket named 'Travel'" in capsys.readouterr().err
