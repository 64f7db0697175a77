"""Celery task runs the sync+classify flow and reports into run state."""
import pytest

from inbox_buckets import run_state, tasks
from inbox_buckets.records import BatchError, RunResult, SyncReport


@pytest.fixture
def task_db(db_engine, monkeypatch):
    from sqlalchemy.orm import sessionmaker

    monkeypatch.setattr(tasks, "SessionLocal", sessionmaker(bind=db_engine))


def test_task_summarizes_run(task_db, monkeypatch):
    def fake_flow(db, user_id, classify, reclassify_bucket_ids, cancel_event):
        assert reclassify_bucket_ids == ["b1"]
        report = SyncReport(new_ids=["a", "b"], existing_ids=["c"])
        result = RunResult(classifications={"a": "b1"}, errors=[BatchError(ids=["b"], reason="validation failed: x")])
        return report, result

    monkeypatch.setattr(tasks, "sync_and_classify", fake_flow)
    summary = tasks.sync_and_classify_user("u1", reclassify_bucket_ids=["b1"])
    assert summary["new"] == 2
    assert summary["classified"] == 1
    assert summary["failed"] == 1
    assert summary["errors"] == [{"ids": ["b"], "reason": "validation failed: x"}]
    state = run_state.get_state("u1")
    assert state["status"] == "idle"
    assert state["classified"] == 1


def test_task_skips_when_run_in_progress(task_db):
    run_state.try_start("u1")
    assert tasks.sync_and_classify_user("u1") == {"skipped": True}


def test_task_records_unexpected_errors(task_db, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("db gone")

    monkeypatch.setattr(tasks, "sync_and_classify", boom)
    with pytest.raises(RuntimeError):
        tasks.sync_and_classify_user("u1")
    assert run_state.get_state("u1")["error"] == "db gone"
