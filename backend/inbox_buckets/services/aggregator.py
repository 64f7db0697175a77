"""Merge per-batch outcomes into one RunResult."""
from __future__ import annotations

import logging
from typing import Iterable

from ..records import BatchError, BatchOutcome, RunResult

logger = logging.getLogger(__name__)


def aggregate(outcomes: Iterable[BatchOutcome]) -> RunResult:
    """
    Successful maps are merged in batch order without overwriting (batches hold
    disjoint ids); BatchErrors are concatenated in batch order.
    """
    result = RunResult()
    for outcome in outcomes:
        if isinstance(outcome, BatchError):
            result.errors.append(outcome)
            continue
        for email_id, bucket_id in outcome.items():
            if email_id in result.classifications:
                logger.warning(f"Email {email_id} assigned by more than one batch; keeping first")
                continue
            result.classifications[email_id] = bucket_id
    return result
