"""Email sync API: POST sync (optionally followed by classification), run status and cancel."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_sync_db
from ..dependencies import get_classification_config, get_optional_classifier, get_thread_fetcher
from ..errors import FetchError, GmailAuthRequiredError, SetupError
from ..run_state import get_state, request_cancel, set_error, set_idle, try_start
from ..schemas import RunStatusResponse, SyncResponse
from ..services.batch_orchestrator import ClassificationConfig
from ..services.classification_service import run_classification
from ..services.email_store import EmailStore
from ..services.sync_service import run_sync
from .classify import run_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users/{user_id}", tags=["sync"])


@router.post("/sync", response_model=SyncResponse)
def sync_emails(
    user_id: str,
    classify: bool = False,
    db: Session = Depends(get_sync_db),
    fetcher=Depends(get_thread_fetcher),
    classifier=Depends(get_optional_classifier),
    config: ClassificationConfig = Depends(get_classification_config),
):
    """
    Fetch recent threads and store the new ones. With classify=true, then
    classify every unclassified email. A fetch failure without classify is an
    error; with classify it is reported and local emails are still classified.
    """
    if classify and classifier is None:
        raise HTTPException(status_code=503, detail="OPENAI_API_KEY not set; classification is unavailable.")
    cancel_event = try_start(user_id, message="Syncing…")
    if cancel_event is None:
        raise HTTPException(status_code=409, detail="A run is already in progress for this user.")

    store = EmailStore(db)
    fetch_error = None
    try:
        report = run_sync(store, user_id, fetcher(user_id))
    except FetchError as e:
        if not classify:
            set_error(str(e), user_id)
            status = 403 if isinstance(e, GmailAuthRequiredError) else 502
            raise HTTPException(status_code=status, detail=str(e))
        logger.error(f"Sync for user {user_id} failed: {e}")
        fetch_error = str(e)
        report = None
    except Exception as e:
        set_error(str(e), user_id)
        raise

    response = SyncResponse(
        new_ids=report.new_ids if report else [],
        existing_count=len(report.existing_ids) if report else 0,
        warnings=list(report.warnings) if report else [],
        fetch_error=fetch_error,
    )
    if classify:
        try:
            result = run_classification(
                store, user_id, classifier=classifier, config=config, cancel_event=cancel_event
            )
        except SetupError as e:
            set_error(str(e), user_id)
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            set_error(str(e), user_id)
            raise
        response.classification = run_response(result)

    classification = response.classification
    set_idle(
        {
            "new": len(response.new_ids),
            "classified": len(classification.classifications) if classification else 0,
            "failed": sum(len(err.ids) for err in classification.errors) if classification else 0,
            "error": fetch_error,
        },
        user_id,
    )
    return response


@router.get("/run-status", response_model=RunStatusResponse)
def run_status(user_id: str):
    return RunStatusResponse(**get_state(user_id))


@router.post("/run/cancel")
def cancel_run(user_id: str):
    """Stop dispatching new batches for the user's current run."""
    if not request_cancel(user_id):
        raise HTTPException(status_code=404, detail="No run in progress for this user.")
    return {"status": "cancelling"}
