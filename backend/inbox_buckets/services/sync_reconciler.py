"""Diff freshly fetched threads against stored thread ids. Pure: callers persist."""
from __future__ import annotations

from datetime import datetime
from typing import AbstractSet, Iterable, Optional

from ..records import EmailRecord, FetchedThread, SyncPlan, utc_now


def dedupe_threads(threads: Iterable[FetchedThread]) -> list[FetchedThread]:
    """Collapse repeated remote ids; the last occurrence's data wins, first position is kept."""
    by_id: dict[str, FetchedThread] = {}
    for thread in threads:
        by_id[thread.remote_id] = thread
    return list(by_id.values())


def thread_to_record(thread: FetchedThread, now: datetime) -> EmailRecord:
    return EmailRecord(
        id=thread.remote_id,
        subject=thread.subject,
        sender=thread.sender,
        preview=thread.preview,
        sent_at=thread.date,
        bucket_id=None,
        last_synced_at=now,
    )


def reconcile(
    fetched: Iterable[FetchedThread],
    known_ids: AbstractSet[str],
    now: Optional[datetime] = None,
) -> SyncPlan:
    """
    Return new EmailRecords for fetched threads whose id is not in known_ids.

    Known threads are listed in SyncPlan.existing_ids and are not touched, so a
    sync never overwrites classification state.
    """
    now = now or utc_now()
    new_records: list[EmailRecord] = []
    existing_ids: list[str] = []
    for thread in dedupe_threads(fetched):
        if thread.remote_id in known_ids:
            existing_ids.append(thread.remote_id)
        else:
            new_records.append(thread_to_record(thread, now))
    return SyncPlan(new_records=new_records, existing_ids=existing_ids)
