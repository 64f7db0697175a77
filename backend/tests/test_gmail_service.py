"""Unit tests for Gmail thread listing and metadata parsing."""
import pickle
import socket
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import TransportError
from googleapiclient.errors import HttpError

from inbox_buckets.errors import FetchError, GmailAuthRequiredError
from inbox_buckets.gmail_service import _parse_date, fetch_threads, list_thread_ids, thread_to_fetched


def _thread(tid, subject="Hello", sender="a@example.com", date="Mon, 01 Jan 2024 12:00:00 +0200"):
    headers = []
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    if sender is not None:
        headers.append({"name": "From", "value": sender})
    if date is not None:
        headers.append({"name": "Date", "value": date})
    return {
        "id": tid,
        "messages": [{"id": f"m-{tid}", "snippet": f"snippet {tid}", "payload": {"headers": headers}}],
    }


def _http_error(status):
    return HttpError(resp=MagicMock(status=status, reason="err"), content=b"{}")


def _service(thread_ids, failing=(), error=None):
    service = MagicMock()
    threads = service.users.return_value.threads.return_value
    threads.list.return_value.execute.return_value = {"threads": [{"id": t} for t in thread_ids]}

    def get(userId, id, format, metadataHeaders):
        request = MagicMock()
        if id in failing:
            request.execute.side_effect = error or _http_error(404)
        else:
            request.execute.return_value = _thread(id)
        return request

    threads.get.side_effect = get
    return service


def test_thread_to_fetched():
    fetched = thread_to_fetched(_thread("t1"))
    assert fetched.remote_id == "t1"
    assert fetched.subject == "Hello"
    assert fetched.sender == "a@example.com"
    assert fetched.preview == "snippet t1"
    assert fetched.date == datetime(2024, 1, 1, 10, 0, 0)


def test_thread_to_fetched_defaults():
    thread = _thread("t1", subject=None, sender=None, date=None)
    thread["messages"][0]["snippet"] = ""
    fetched = thread_to_fetched(thread)
    assert fetched.subject == "No Subject"
    assert fetched.sender == "Unknown Sender"
    assert fetched.preview == "No Preview"
    assert fetched.date is None


def test_thread_without_messages_is_skipped():
    assert thread_to_fetched({"id": "t1", "messages": []}) is None
    assert thread_to_fetched({"messages": [{"id": "m"}]}) is None


@pytest.mark.parametrize("value", ["", "not a date", None])
def test_parse_date_invalid(value):
    assert _parse_date(value) is None


def test_list_thread_ids_follows_pages():
    service = MagicMock()
    execute = service.users.return_value.threads.return_value.list.return_value.execute
    execute.side_effect = [
        {"threads": [{"id": "1"}, {"id": "2"}], "nextPageToken": "p2"},
        {"threads": [{"id": "3"}]},
    ]
    with patch("inbox_buckets.gmail_service._with_backoff", side_effect=lambda fn: fn()):
        assert list_thread_ids(service, 10) == ["1", "2", "3"]
    assert execute.call_count == 2


def test_fetch_threads_keeps_list_order_and_skips_failures():
    service = _service(["c", "a", "b", "d"], failing={"b"})
    threads = fetch_threads(service, max_results=10, max_workers=3)
    assert [t.remote_id for t in threads] == ["c", "a", "d"]


def test_fetch_threads_empty_inbox():
    service = MagicMock()
    service.users.return_value.threads.return_value.list.return_value.execute.return_value = {}
    assert fetch_threads(service, max_results=10) == []


@pytest.mark.parametrize("status,error", [(401, GmailAuthRequiredError), (403, GmailAuthRequiredError), (404, FetchError)])
def test_list_failure_is_fetch_error(status, error):
    service = MagicMock()
    service.users.return_value.threads.return_value.list.return_value.execute.side_effect = _http_error(status)
    with pytest.raises(error):
        fetch_threads(service, max_results=10)


def test_missing_token_requires_auth(tmp_path, monkeypatch):
    from inbox_buckets import gmail_service
    from inbox_buckets.config import settings

    monkeypatch.setattr(settings, "token_dir", str(tmp_path))
    with pytest.raises(GmailAuthRequiredError):
        gmail_service.get_gmail_service("nobody")


def test_list_network_failure_is_fetch_error():
    service = MagicMock()
    service.users.return_value.threads.return_value.list.return_value.execute.side_effect = socket.timeout("timed out")
    with pytest.raises(FetchError, match="timed out"):
        fetch_threads(service, max_results=10)


def test_thread_detail_network_failure_is_skipped():
    service = _service(["a", "b", "c"], failing={"b"}, error=ConnectionResetError("reset by peer"))
    threads = fetch_threads(service, max_results=10, max_workers=2)
    assert [t.remote_id for t in threads] == ["a", "c"]


class ExpiredCreds:
    """Pickled in place of google Credentials; refresh cannot reach Google."""
    valid = False
    expired = True
    refresh_token = "r"

    def refresh(self, request):
        raise TransportError("connection refused")


def test_refresh_transport_failure_is_fetch_error(tmp_path, monkeypatch):
    from inbox_buckets import gmail_service
    from inbox_buckets.config import settings

    monkeypatch.setattr(settings, "token_dir", str(tmp_path))
    with open(tmp_path / "token_u1.pickle", "wb") as f:
        pickle.dump(ExpiredCreds(), f)
    with pytest.raises(FetchError) as exc:
        gmail_service.get_gmail_service("u1")
    assert not isinstance(exc.value, GmailAuthRequiredError)
