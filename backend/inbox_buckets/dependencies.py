"""FastAPI dependencies shared by routers."""
from typing import Callable, Optional

from fastapi import HTTPException

from .config import settings
from .gmail_service import fetch_threads, get_gmail_service
from .llm_classifier import StructuredClassifier
from .services.batch_orchestrator import ClassificationConfig
from .services.sync_service import FetchFn


def get_optional_classifier() -> Optional[StructuredClassifier]:
    if not settings.openai_api_key:
        return None
    return StructuredClassifier()


def get_classifier() -> StructuredClassifier:
    classifier = get_optional_classifier()
    if classifier is None:
        raise HTTPException(status_code=503, detail="OPENAI_API_KEY not set; classification is unavailable.")
    return classifier


def get_classification_config() -> ClassificationConfig:
    return ClassificationConfig.from_settings()


def get_thread_fetcher() -> Callable[[str], FetchFn]:
    """Return a factory: user_id -> zero-arg function fetching that user's recent threads."""
    def for_user(user_id: str) -> FetchFn:
        return lambda: fetch_threads(get_gmail_service(user_id))
    return for_user
