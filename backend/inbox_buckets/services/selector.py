"""Pick the emails a classification run submits."""
from __future__ import annotations

from typing import AbstractSet, Iterable

from ..records import EmailRecord


def select_for_classification(
    emails: Iterable[EmailRecord],
    reclassify_bucket_ids: AbstractSet[str] = frozenset(),
) -> list[EmailRecord]:
    """
    Union of every unclassified email and every email currently in one of the
    chosen buckets. Already-classified emails in a chosen bucket are resubmitted
    so bucket definition changes can be applied. Input order is preserved and
    each id appears once.
    """
    selected: list[EmailRecord] = []
    seen: set[str] = set()
    for email in emails:
        if email.id in seen:
            continue
        if email.bucket_id is None or email.bucket_id in reclassify_bucket_ids:
            selected.append(email)
            seen.add(email.id)
    return selected
