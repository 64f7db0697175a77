"""Celery tasks: sync + classify for one user. DB session per task."""
import logging
from typing import List, Optional

from celery import shared_task

from .database import SessionLocal
from .run_state import set_error, set_idle, try_start
from .services.classification_service import sync_and_classify

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="inbox_buckets.tasks.sync_and_classify_user")
def sync_and_classify_user(
    self,
    user_id: str,
    reclassify_bucket_ids: Optional[List[str]] = None,
    classify: bool = True,
):
    """
    Fetch new threads for the user, store them, then classify unclassified
    emails plus the emails of reclassify_bucket_ids. Returns a JSON-safe summary.
    """
    cancel_event = try_start(user_id, message="Syncing…")
    if cancel_event is None:
        logger.warning(f"User {user_id}: run already in progress in this worker; skipping")
        return {"skipped": True}
    db = SessionLocal()
    try:
        report, result = sync_and_classify(
            db,
            user_id,
            classify=classify,
            reclassify_bucket_ids=reclassify_bucket_ids or [],
            cancel_event=cancel_event,
        )
        summary = {
            "new": len(report.new_ids),
            "existing": len(report.existing_ids),
            "fetch_error": report.fetch_error,
            "warnings": list(report.warnings) + (list(result.warnings) if result else []),
            "classified": len(result.classifications) if result else 0,
            "failed": len(result.failed_ids) if result else 0,
            "errors": [err.to_dict() for err in result.errors] if result else [],
        }
        set_idle({**summary, "error": report.fetch_error}, user_id)
        return summary
    except Exception as e:
        set_error(str(e), user_id)
        raise
    finally:
        db.close()
