"""Pytest fixtures: in-memory DB, scripted classifier, client."""
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import threading
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from inbox_buckets import run_state
from inbox_buckets.database import get_sync_db
from inbox_buckets.dependencies import (
    get_classification_config,
    get_classifier,
    get_optional_classifier,
    get_thread_fetcher,
)
from inbox_buckets.main import app
from inbox_buckets.models import Base
from inbox_buckets.records import BucketSnapshot, EmailRecord
from inbox_buckets.services.batch_orchestrator import ClassificationConfig


def first_bucket(emails, buckets):
    return [{"id": e.id, "bucket_name": buckets[0].name} for e in emails]


class FakeClassifier:
    """Stands in for StructuredClassifier: answers each batch with answer(emails, buckets)."""

    def __init__(self, answer=first_bucket, delay_s=0.0):
        self.answer = answer
        self.delay_s = delay_s
        self.calls = []
        self.call_times = []
        self._lock = threading.Lock()

    def classify_batch(self, emails, buckets, timeout_s=None):
        with self._lock:
            self.calls.append([e.id for e in emails])
            self.call_times.append(time.monotonic())
        if self.delay_s:
            time.sleep(self.delay_s)
        return self.answer(emails, buckets)

    @property
    def submitted_ids(self):
        return [i for call in self.calls for i in call]


@pytest.fixture
def make_classifier():
    return FakeClassifier


@pytest.fixture
def make_emails():
    def _make(n, prefix="e", bucket_id=None):
        return [
            EmailRecord(id=f"{prefix}{i}", subject=f"Subject {i}", sender="a@example.com", preview="hi", bucket_id=bucket_id)
            for i in range(n)
        ]
    return _make


@pytest.fixture
def buckets():
    return [
        BucketSnapshot(id="b-work", name="Work", description="Job related"),
        BucketSnapshot(id="b-personal", name="Personal"),
        BucketSnapshot(id="b-spam", name="Spam"),
    ]


@pytest.fixture
def fast_config():
    """Generous rate so tests are not throttled."""
    return ClassificationConfig(
        batch_size=10,
        start_rate=100,
        rate_window_s=1.0,
        batch_timeout_s=5.0,
        max_working_set=500,
        max_concurrency=8,
        poll_interval_s=0.01,
    )


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_run_state():
    run_state.reset()
    yield
    run_state.reset()


@pytest.fixture
def fetched_threads():
    """Threads returned by the fake fetcher; tests mutate the list."""
    return []


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def client(db_engine, fetched_threads, fake_classifier, fast_config):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    def override_fetcher():
        return lambda user_id: (lambda: list(fetched_threads))

    app.dependency_overrides[get_sync_db] = override_get_db
    app.dependency_overrides[get_thread_fetcher] = override_fetcher
    app.dependency_overrides[get_classifier] = lambda: fake_classifier
    app.dependency_overrides[get_optional_classifier] = lambda: fake_classifier
    app.dependency_overrides[get_classification_config] = lambda: fast_config
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
