"""Batch dispatch: fixed-size batches, start-rate admission, per-batch isolation.

Workers only compute and return their batch's outcome. The dispatching thread
owns one result slot per batch index and is the only writer, so no shared map
is mutated from worker threads. After all slots are filled the outcomes are
merged sequentially by the aggregator.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from ..config import settings
from ..errors import CancellationError, GenerationError, InvariantViolation, ValidationError
from ..records import BatchError, BatchOutcome, BucketSnapshot, EmailRecord, RunResult
from .aggregator import aggregate
from .rate_limiter import StartRateLimiter
from .response_validator import validate_batch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationConfig:
    batch_size: int = 15
    start_rate: int = 3
    rate_window_s: float = 1.0
    batch_timeout_s: float = 60.0
    max_working_set: int = 500
    max_concurrency: int = 8
    poll_interval_s: float = 0.05

    def __post_init__(self):
        for name in ("batch_size", "start_rate", "max_working_set", "max_concurrency"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer")
        for name in ("rate_window_s", "batch_timeout_s", "poll_interval_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

    @classmethod
    def from_settings(cls, **overrides) -> "ClassificationConfig":
        values = {
            "batch_size": settings.classification_batch_size,
            "start_rate": settings.classification_start_rate,
            "rate_window_s": settings.classification_rate_window_s,
            "batch_timeout_s": settings.classification_batch_timeout_s,
            "max_working_set": settings.classification_max_working_set,
            "max_concurrency": settings.classification_max_concurrency,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def chunk_list(items: list, chunk_size: int) -> list[list]:
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]


class _CapacityToken:
    """Releases one concurrency slot exactly once (on completion or on abandonment)."""

    def __init__(self, semaphore: threading.Semaphore):
        self._semaphore = semaphore
        self._lock = threading.Lock()
        self._released = False

    def release(self, *_args) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._semaphore.release()


@dataclass
class _InFlight:
    index: int
    ids: list[str]
    started_at: float
    token: _CapacityToken


class BatchOrchestrator:
    """
    Classify a working set in batches.

    `classifier` is any object with
    `classify_batch(emails, buckets, timeout_s=None) -> raw candidate array`.
    run() always returns a RunResult; a batch that raises, times out, fails
    validation or is cancelled becomes a BatchError. Only InvariantViolation
    propagates.
    """

    def __init__(
        self,
        classifier: Any,
        config: Optional[ClassificationConfig] = None,
        limiter: Optional[StartRateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.classifier = classifier
        self.config = config or ClassificationConfig.from_settings()
        self.limiter = limiter
        self._clock = clock

    def _run_batch(
        self,
        index: int,
        batch: Sequence[EmailRecord],
        buckets: Sequence[BucketSnapshot],
    ) -> BatchOutcome:
        ids = [e.id for e in batch]
        timeout_s = self.config.batch_timeout_s
        started = self._clock()
        try:
            raw = self.classifier.classify_batch(batch, buckets, timeout_s=timeout_s)
        except InvariantViolation:
            raise
        except GenerationError as e:
            logger.error(f"Batch {index}: generation failed - {e}")
            return BatchError(ids=ids, reason=f"generation failed: {e}", kind="generation")
        except Exception as e:
            logger.exception(f"Batch {index}: classifier raised")
            return BatchError(ids=ids, reason=f"classifier error: {e}", kind="error")

        elapsed = self._clock() - started
        if elapsed > timeout_s:
            logger.error(f"Batch {index}: finished after {elapsed:.1f}s, over the {timeout_s}s limit")
            return BatchError(ids=ids, reason=f"batch timed out after {timeout_s}s", kind="timeout")

        try:
            assignments = validate_batch(ids, buckets, raw)
        except ValidationError as e:
            logger.error(f"Batch {index}: validation failed - {e}")
            return BatchError(ids=ids, reason=f"validation failed: {e}", kind="validation")
        logger.info(f"Batch {index}: {len(assignments)} emails classified")
        return assignments

    def _harvest(self, inflight: dict[Future, _InFlight], slots: list) -> None:
        """Fill slots for finished batches and abandon batches past their deadline."""
        now = self._clock()
        for future, entry in list(inflight.items()):
            if future.done():
                del inflight[future]
                # A worker only raises for InvariantViolation.
                slots[entry.index] = future.result()
            elif now - entry.started_at >= self.config.batch_timeout_s:
                del inflight[future]
                future.cancel()
                entry.token.release()
                logger.error(f"Batch {entry.index}: no result after {self.config.batch_timeout_s}s; abandoned")
                slots[entry.index] = BatchError(
                    ids=entry.ids,
                    reason=f"batch timed out after {self.config.batch_timeout_s}s",
                    kind="timeout",
                )

    def _wait_for_capacity(
        self,
        capacity: threading.Semaphore,
        inflight: dict[Future, _InFlight],
        slots: list,
        cancel_event: Optional[threading.Event],
    ) -> bool:
        while not capacity.acquire(timeout=self.config.poll_interval_s):
            if cancel_event is not None and cancel_event.is_set():
                return False
            self._harvest(inflight, slots)
        return True

    @staticmethod
    def _cancel(ids: list[str], reason: str) -> BatchError:
        return BatchError(ids=ids, reason=str(CancellationError(reason)), kind="cancelled")

    def run(
        self,
        emails: Sequence[EmailRecord],
        buckets: Sequence[BucketSnapshot],
        cancel_event: Optional[threading.Event] = None,
    ) -> RunResult:
        batches = chunk_list(list(emails), self.config.batch_size)
        if not batches:
            return RunResult(nothing_to_do=True)

        limiter = self.limiter or StartRateLimiter(self.config.start_rate, self.config.rate_window_s)
        capacity = threading.Semaphore(self.config.max_concurrency)
        slots: list[Optional[BatchOutcome]] = [None] * len(batches)
        inflight: dict[Future, _InFlight] = {}
        logger.info(
            f"Dispatching {len(emails)} emails in {len(batches)} batches "
            f"(batch_size={self.config.batch_size}, start_rate={self.config.start_rate}/"
            f"{self.config.rate_window_s}s)"
        )

        # Abandoned batches keep their thread until the call returns, so the pool
        # is sized to the batch count and `capacity` bounds live work.
        executor = ThreadPoolExecutor(max_workers=len(batches), thread_name_prefix="classify")
        try:
            for index, batch in enumerate(batches):
                ids = [e.id for e in batch]
                if not self._wait_for_capacity(capacity, inflight, slots, cancel_event):
                    slots[index] = self._cancel(ids, "run cancelled before dispatch")
                    continue
                if not limiter.acquire(cancel_event):
                    capacity.release()
                    slots[index] = self._cancel(ids, "run cancelled before dispatch")
                    continue
                token = _CapacityToken(capacity)
                started_at = self._clock()
                future = executor.submit(self._run_batch, index, batch, buckets)
                future.add_done_callback(token.release)
                inflight[future] = _InFlight(index=index, ids=ids, started_at=started_at, token=token)
                logger.debug(f"Batch {index}: started ({len(batch)} emails)")
                self._harvest(inflight, slots)

            while inflight:
                self._harvest(inflight, slots)
                if not inflight:
                    break
                if cancel_event is not None and cancel_event.is_set():
                    for future, entry in list(inflight.items()):
                        del inflight[future]
                        future.cancel()
                        entry.token.release()
                        slots[entry.index] = self._cancel(entry.ids, "run cancelled while batch was in flight")
                    break
                now = self._clock()
                next_deadline = min(e.started_at + self.config.batch_timeout_s for e in inflight.values())
                timeout = max(0.0, min(self.config.poll_interval_s, next_deadline - now))
                wait(list(inflight), timeout=timeout, return_when=FIRST_COMPLETED)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if any(slot is None for slot in slots):
            raise InvariantViolation("a batch finished without an outcome")
        result = aggregate(slots)
        logger.info(
            f"Classification run complete: {len(result.classifications)} classified, "
            f"{len(result.errors)} failed batches"
        )
        return result
