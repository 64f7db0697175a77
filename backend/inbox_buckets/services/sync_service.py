"""Sync step: fetch remote threads, diff against stored ids, persist the new ones."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from ..errors import PersistenceError
from ..records import FetchedThread, SyncReport
from .email_store import EmailStore
from .sync_reconciler import dedupe_threads, reconcile

logger = logging.getLogger(__name__)

FetchFn = Callable[[], list[FetchedThread]]


def run_sync(
    store: EmailStore,
    user_id: str,
    fetch: FetchFn,
    now: Optional[datetime] = None,
) -> SyncReport:
    """
    Persist threads not yet stored for the user. FetchError from `fetch`
    propagates; storage failures are returned as warnings.
    """
    threads = dedupe_threads(fetch())
    report = SyncReport()
    if not threads:
        logger.info(f"Sync for user {user_id}: no threads fetched, nothing to do")
        return report

    try:
        known = store.get_known_ids(user_id, [t.remote_id for t in threads])
    except PersistenceError as e:
        # Without the known set the diff cannot be trusted.
        logger.warning(f"Sync for user {user_id}: {e}")
        report.warnings.append(str(e))
        return report

    plan = reconcile(threads, known, now=now)
    report.existing_ids = list(plan.existing_ids)
    logger.info(
        f"Sync for user {user_id}: {len(plan.new_records)} new threads, "
        f"{len(plan.existing_ids)} already stored"
    )
    if not plan.new_records:
        return report

    try:
        store.upsert_emails(user_id, plan.new_records)
    except PersistenceError as e:
        logger.warning(f"Sync for user {user_id}: {e}")
        report.warnings.append(str(e))
        return report
    report.new_ids = [r.id for r in plan.new_records]
    return report
