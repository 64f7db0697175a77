"""Classification API: stateless batch classification and per-user classification runs."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_sync_db
from ..dependencies import get_classification_config, get_classifier
from ..errors import SetupError
from ..records import BucketSnapshot, EmailRecord, RunResult
from ..run_state import set_error, set_idle, try_start
from ..schemas import ClassifyRequest, ClassifyResponse, ClassifyRunRequest, ClassifyRunResponse
from ..services.batch_orchestrator import ClassificationConfig
from ..services.classification_service import classify_emails, run_classification
from ..services.email_store import EmailStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["classify"])


def run_response(result: RunResult) -> ClassifyRunResponse:
    return ClassifyRunResponse(
        **result.to_dict(),
        nothing_to_do=result.nothing_to_do,
        warnings=list(result.warnings),
    )


@router.post("/core/classify", response_model=ClassifyResponse)
def classify(
    body: ClassifyRequest,
    classifier=Depends(get_classifier),
    config: ClassificationConfig = Depends(get_classification_config),
):
    """
    Classify the given emails into the given buckets. The response shape does
    not depend on batch size or rate-limit tuning.
    """
    emails = [EmailRecord(id=e.id, subject=e.subject, sender=e.sender, preview=e.preview) for e in body.emails]
    buckets = [BucketSnapshot(id=b.id, name=b.name, description=b.description) for b in body.buckets]
    logger.info(f"Received {len(emails)} emails and {len(buckets)} buckets for classification")
    try:
        result = classify_emails(emails, buckets, classifier=classifier, config=config)
    except SetupError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ClassifyResponse(**result.to_dict())


@router.post("/users/{user_id}/classify", response_model=ClassifyRunResponse)
def classify_user_emails(
    user_id: str,
    body: ClassifyRunRequest,
    db: Session = Depends(get_sync_db),
    classifier=Depends(get_classifier),
    config: ClassificationConfig = Depends(get_classification_config),
):
    """Classify all unclassified emails plus the emails of the chosen buckets, and save the results."""
    cancel_event = try_start(user_id, message="Classifying…")
    if cancel_event is None:
        raise HTTPException(status_code=409, detail="A run is already in progress for this user.")
    try:
        result = run_classification(
            EmailStore(db),
            user_id,
            reclassify_bucket_ids=body.bucket_ids,
            classifier=classifier,
            config=config,
            cancel_event=cancel_event,
        )
    except SetupError as e:
        set_error(str(e), user_id)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        set_error(str(e), user_id)
        raise
    set_idle({"classified": len(result.classifications), "failed": len(result.failed_ids)}, user_id)
    return run_response(result)
