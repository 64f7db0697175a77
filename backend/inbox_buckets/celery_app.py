"""Celery app for scheduled sync-and-classify runs. Uses Redis; DB session per task."""
import logging

from celery import Celery
from celery.signals import setup_logging

from .config import settings

celery_app = Celery(
    "inbox_buckets",
    broker=settings.celery_broker,
    backend=settings.redis_url,
    include=["inbox_buckets.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


@setup_logging.connect
def _configure_logging(**kwargs):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
