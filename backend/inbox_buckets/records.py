"""Plain data records passed between pipeline stages (no DB or HTTP types)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union


def utc_now() -> datetime:
    """Current time as naive UTC, the convention for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class FetchedThread:
    """Thread metadata as returned by the remote fetcher."""
    remote_id: str
    subject: str = ""
    sender: str = ""
    preview: str = ""
    date: Optional[datetime] = None


@dataclass(frozen=True)
class EmailRecord:
    id: str
    subject: Optional[str] = None
    sender: Optional[str] = None
    preview: Optional[str] = None
    sent_at: Optional[datetime] = None
    bucket_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None


@dataclass(frozen=True)
class BucketSnapshot:
    id: str
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class BatchError:
    """One failed batch. `ids` lists every email of the batch; none of them were assigned."""
    ids: List[str]
    reason: str
    kind: str = "error"  # generation, validation, timeout, cancelled, deferred, error

    def to_dict(self) -> dict:
        return {"ids": list(self.ids), "reason": self.reason}


# Either the validated {email_id: bucket_id} map of a batch or its error.
BatchOutcome = Union[Dict[str, str], BatchError]


@dataclass
class RunResult:
    classifications: Dict[str, str] = field(default_factory=dict)
    errors: List[BatchError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    nothing_to_do: bool = False

    @property
    def failed_ids(self) -> set[str]:
        return {email_id for err in self.errors for email_id in err.ids}

    def to_dict(self) -> dict:
        return {
            "classifications": dict(self.classifications),
            "errors": [err.to_dict() for err in self.errors],
        }


@dataclass(frozen=True)
class SyncPlan:
    """Reconciler output: rows to insert plus fetched ids that were already stored."""
    new_records: List[EmailRecord]
    existing_ids: List[str]


@dataclass
class SyncReport:
    new_ids: List[str] = field(default_factory=list)
    existing_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    fetch_error: Optional[str] = None
