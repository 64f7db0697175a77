"""Classification entry points: stateless invocation, per-user run, and the full sync+classify flow."""
from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from ..errors import FetchError, PersistenceError, SetupError
from ..records import BatchError, BucketSnapshot, EmailRecord, RunResult, SyncReport
from .batch_orchestrator import BatchOrchestrator, ClassificationConfig
from .email_store import EmailStore
from .selector import select_for_classification
from .sync_service import FetchFn, run_sync

logger = logging.getLogger(__name__)


def check_buckets(buckets: Sequence[BucketSnapshot]) -> None:
    """Bucket snapshot preconditions: at least one bucket, names unique."""
    if not buckets:
        raise SetupError("At least one bucket is required for classification.")
    seen: set[str] = set()
    for bucket in buckets:
        if bucket.name in seen:
            raise SetupError(f"Bucket names must be unique; {bucket.name!r} appears more than once.")
        seen.add(bucket.name)


def _default_classifier():
    from ..llm_classifier import StructuredClassifier
    return StructuredClassifier()


def classify_emails(
    emails: Iterable[EmailRecord],
    buckets: Sequence[BucketSnapshot],
    classifier: Any = None,
    config: Optional[ClassificationConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunResult:
    """
    Classify emails into buckets. Returns whatever succeeded plus one error entry
    per failed batch; every input id ends up either classified or listed in an
    error. Raises SetupError before dispatch if the bucket snapshot is unusable
    or the classifier cannot be configured (no API key).
    """
    check_buckets(buckets)
    config = config or ClassificationConfig.from_settings()

    unique: dict[str, EmailRecord] = {}
    for email in emails:
        if email.id in unique:
            logger.warning(f"Duplicate email id {email.id} in classification input; keeping first")
            continue
        unique[email.id] = email
    working_set = list(unique.values())
    if not working_set:
        logger.info("Nothing to classify")
        return RunResult(nothing_to_do=True)

    deferred = working_set[config.max_working_set:]
    working_set = working_set[: config.max_working_set]

    classifier = classifier or _default_classifier()
    check_ready = getattr(classifier, "check_ready", None)
    if check_ready is not None:
        check_ready()
    orchestrator = BatchOrchestrator(classifier, config)
    result = orchestrator.run(working_set, buckets, cancel_event=cancel_event)
    if deferred:
        logger.warning(f"{len(deferred)} emails over the working-set cap of {config.max_working_set}; deferred")
        result.errors.append(BatchError(
            ids=[e.id for e in deferred],
            reason=f"deferred: working set exceeds {config.max_working_set} emails per run",
            kind="deferred",
        ))
    return result


def run_classification(
    store: EmailStore,
    user_id: str,
    reclassify_bucket_ids: Iterable[str] = (),
    classifier: Any = None,
    config: Optional[ClassificationConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    persist: bool = True,
) -> RunResult:
    """
    Classify the user's unclassified emails plus every email in the chosen
    buckets, then persist the assignments (skipped when persist is False, for
    dry runs). Storage failures before dispatch raise SetupError; failures
    writing results become warnings.
    """
    try:
        buckets = store.ensure_default_buckets(user_id)
        emails = store.list_emails(user_id)
    except PersistenceError as e:
        raise SetupError(f"Storage unavailable: {e}") from e

    warnings: list[str] = []
    chosen = set(reclassify_bucket_ids)
    unknown = chosen - {b.id for b in buckets}
    if unknown:
        warnings.append(f"Ignoring unknown bucket ids: {', '.join(sorted(unknown))}")
        chosen -= unknown

    selected = select_for_classification(emails, chosen)
    if not selected:
        logger.info(f"User {user_id}: no emails to classify")
        return RunResult(nothing_to_do=True, warnings=warnings)
    logger.info(
        f"User {user_id}: classifying {len(selected)} emails "
        f"({len(chosen)} buckets chosen for reclassification)"
    )

    result = classify_emails(selected, buckets, classifier=classifier, config=config, cancel_event=cancel_event)

    if not persist:
        logger.info(f"User {user_id}: dry run, {len(result.classifications)} assignments not saved")
    else:
        try:
            updated, write_warnings = store.apply_assignments(user_id, result.classifications)
            warnings.extend(write_warnings)
            logger.info(f"User {user_id}: saved {updated} bucket assignments")
        except PersistenceError as e:
            logger.warning(f"User {user_id}: {e}")
            warnings.append(str(e))
    result.warnings = warnings + result.warnings
    return result


def _gmail_fetch(user_id: str) -> FetchFn:
    def fetch():
        from ..gmail_service import fetch_threads, get_gmail_service
        return fetch_threads(get_gmail_service(user_id))
    return fetch


def sync_and_classify(
    db: Session,
    user_id: str,
    fetch: Optional[FetchFn] = None,
    classify: bool = True,
    reclassify_bucket_ids: Iterable[str] = (),
    classifier: Any = None,
    config: Optional[ClassificationConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> tuple[SyncReport, Optional[RunResult]]:
    """
    Fetch -> reconcile -> persist -> select -> classify -> persist for one user.
    A FetchError is recorded on the report and classification still runs over
    the previously stored emails.
    """
    store = EmailStore(db)
    try:
        report = run_sync(store, user_id, fetch or _gmail_fetch(user_id))
    except FetchError as e:
        logger.error(f"Sync for user {user_id} failed: {e}")
        report = SyncReport(fetch_error=str(e))

    if not classify:
        return report, None
    result = run_classification(
        store,
        user_id,
        reclassify_bucket_ids=reclassify_bucket_ids,
        classifier=classifier,
        config=config,
        cancel_event=cancel_event,
    )
    return report, result
