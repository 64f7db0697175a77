"""Gmail API integration: list recent threads and read their first message's metadata."""
import logging
import os
import pickle
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, List

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import settings
from .errors import FetchError, GmailAuthRequiredError
from .records import FetchedThread

logger = logging.getLogger(__name__)

METADATA_HEADERS = ["Subject", "From", "Date"]


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(backend_dir, path)


def token_path_for_user(user_id: Optional[str] = None) -> str:
    if settings.token_dir and user_id is not None:
        return os.path.join(_resolve_path(settings.token_dir), f"token_{user_id}.pickle")
    return _resolve_path(settings.token_path)


def get_gmail_service(user_id: Optional[str] = None):
    """
    Return Gmail API service from the user's stored token. Never opens a
    browser: a missing token, or an expired one that cannot be refreshed,
    raises GmailAuthRequiredError.
    """
    token_path = token_path_for_user(user_id)
    if not os.path.exists(token_path):
        raise GmailAuthRequiredError(f"Gmail authorization required: no token at {token_path}")
    with open(token_path, "rb") as token:
        creds = pickle.load(token)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as e:
                raise GmailAuthRequiredError(
                    "Gmail token expired and refresh failed. Please re-authenticate."
                ) from e
            except TransportError as e:
                raise FetchError(f"Could not reach Google to refresh the Gmail token: {e}") from e
            with open(token_path, "wb") as token:
                pickle.dump(creds, token)
            try:
                os.chmod(token_path, 0o600)
            except OSError as e:
                logger.warning(f"Could not restrict permissions on {token_path}: {e}")
        else:
            raise GmailAuthRequiredError("Gmail token is invalid. Please re-authenticate.")

    return build("gmail", "v1", credentials=creds, cache_discovery=False)


# Rate limiting: exponential backoff
def _with_backoff(fn, max_retries: int = 5):
    for attempt in range(max_retries):
        try:
            return fn()
        except HttpError as e:
            if e.resp.status in (429, 500, 503) and attempt < max_retries - 1:
                time.sleep(2 ** attempt)
                continue
            raise


def list_thread_ids(service, max_results: int) -> List[str]:
    """Most recent thread ids, following pagination up to max_results."""
    ids: List[str] = []
    page_token = None
    while len(ids) < max_results:
        result = _with_backoff(
            lambda: service.users()
            .threads()
            .list(userId="me", maxResults=min(500, max_results - len(ids)), pageToken=page_token)
            .execute()
        )
        ids.extend(t["id"] for t in result.get("threads", []) if t.get("id"))
        next_page_token = result.get("nextPageToken")
        if not next_page_token or next_page_token == page_token:
            break
        page_token = next_page_token
    return ids[:max_results]


def get_thread_metadata(service, thread_id: str) -> dict:
    return _with_backoff(
        lambda: service.users()
        .threads()
        .get(userId="me", id=thread_id, format="metadata", metadataHeaders=METADATA_HEADERS)
        .execute()
    )


def _parse_date(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    # Stored as naive UTC.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def thread_to_fetched(thread: dict) -> Optional[FetchedThread]:
    """Build a FetchedThread from threads.get(format=metadata). None if the thread has no usable message."""
    thread_id = thread.get("id")
    messages = thread.get("messages") or []
    if not thread_id or not messages:
        return None
    message = messages[0]
    payload = message.get("payload")
    if not message.get("id") or not payload:
        return None
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    return FetchedThread(
        remote_id=thread_id,
        subject=headers.get("subject") or "No Subject",
        sender=headers.get("from") or "Unknown Sender",
        preview=message.get("snippet") or "No Preview",
        date=_parse_date(headers.get("date", "")),
    )


def fetch_threads(
    service,
    max_results: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> List[FetchedThread]:
    """
    Fetch recent threads with minimal metadata, in list order. A failing list
    call raises FetchError; a failing detail fetch skips that thread.
    """
    max_results = max_results or settings.gmail_fetch_max_results
    max_workers = max_workers or settings.gmail_fetch_workers
    try:
        thread_ids = list_thread_ids(service, max_results)
    except HttpError as e:
        status = getattr(e.resp, "status", None)
        if status in (401, 403):
            raise GmailAuthRequiredError(f"Google token is invalid or expired: {e}") from e
        raise FetchError(f"Google API error fetching thread list: {e}") from e
    except Exception as e:
        # socket timeouts, connection resets, TLS and httplib2 transport errors
        raise FetchError(f"Could not reach Gmail to list threads: {e}") from e

    if not thread_ids:
        logger.info("No threads found in Gmail inbox.")
        return []
    logger.info(f"Found {len(thread_ids)} threads; fetching metadata with {max_workers} workers")

    fetched: dict[str, FetchedThread] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(get_thread_metadata, service, tid): tid for tid in thread_ids}
        for future in as_completed(futures):
            tid = futures[future]
            try:
                thread = thread_to_fetched(future.result())
            except Exception as e:
                logger.error(f"Error fetching details for thread {tid}: {e}")
                continue
            if thread is not None:
                fetched[tid] = thread

    threads = [fetched[tid] for tid in thread_ids if tid in fetched]
    logger.info(f"Successfully fetched details for {len(threads)} email threads.")
    return threads
