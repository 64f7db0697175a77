"""Strict gate between raw model output and trusted bucket assignments.

A batch is accepted only when every rule holds; otherwise the whole batch is
rejected with a ValidationError naming the first violated rule. Bucket names
are the interchange key with the model and are translated to bucket ids here,
so nothing downstream sees names.
"""
from __future__ import annotations

from typing import Any, Sequence

from ..errors import InvariantViolation, ValidationError
from ..records import BucketSnapshot

ID_KEY = "id"
BUCKET_KEY = "bucket_name"
_ELEMENT_KEYS = {ID_KEY, BUCKET_KEY}


def bucket_name_index(buckets: Sequence[BucketSnapshot]) -> dict[str, str]:
    """Map bucket name -> bucket id. Names must be unique."""
    index: dict[str, str] = {}
    for bucket in buckets:
        if bucket.name in index:
            raise InvariantViolation(f"duplicate bucket name {bucket.name!r} in snapshot")
        index[bucket.name] = bucket.id
    return index


def _short(items: Sequence[str], limit: int = 5) -> str:
    shown = ", ".join(items[:limit])
    if len(items) > limit:
        shown += f", … (+{len(items) - limit} more)"
    return shown


def check_response(input_ids: Sequence[str], bucket_names: set[str], raw: Any) -> None:
    """Raise ValidationError unless raw is an exact, well-formed answer for input_ids."""
    if not isinstance(raw, list):
        raise ValidationError(f"response is not an array (got {type(raw).__name__})")

    expected = len(input_ids)
    if len(raw) != expected:
        returned = {
            item.get(ID_KEY) for item in raw
            if isinstance(item, dict) and isinstance(item.get(ID_KEY), str)
        }
        missing = [i for i in input_ids if i not in returned]
        reason = f"expected {expected} classifications, got {len(raw)}"
        if missing:
            reason += f"; missing id: {_short(missing)}"
        raise ValidationError(reason)

    for pos, item in enumerate(raw):
        if (
            not isinstance(item, dict)
            or set(item.keys()) != _ELEMENT_KEYS
            or not isinstance(item[ID_KEY], str)
            or not isinstance(item[BUCKET_KEY], str)
        ):
            raise ValidationError(
                f"invalid element at index {pos}: expected an object with exactly "
                f"'{ID_KEY}' and '{BUCKET_KEY}' strings"
            )

    returned_ids = [item[ID_KEY] for item in raw]
    if len(set(returned_ids)) != len(returned_ids):
        seen: set[str] = set()
        dupes = []
        for rid in returned_ids:
            if rid in seen and rid not in dupes:
                dupes.append(rid)
            seen.add(rid)
        raise ValidationError(f"duplicate id returned: {_short(dupes)}")

    # Same length and no duplicates: a missing input id implies a foreign one.
    returned_set = set(returned_ids)
    missing = [i for i in input_ids if i not in returned_set]
    if missing:
        input_set = set(input_ids)
        foreign = [rid for rid in returned_ids if rid not in input_set]
        raise ValidationError(
            f"missing id: {_short(missing)} (unexpected id: {_short(foreign)})"
        )

    for item in raw:
        if item[BUCKET_KEY] not in bucket_names:
            raise ValidationError(
                f"invalid bucket name {item[BUCKET_KEY]!r} for id {item[ID_KEY]}"
            )


def validate_batch(
    input_ids: Sequence[str],
    buckets: Sequence[BucketSnapshot],
    raw: Any,
) -> dict[str, str]:
    """
    Validate one batch's raw candidate array and translate it to
    {email_id: bucket_id}. Pure; calling it twice on the same input gives the
    same decision and the same map.
    """
    name_to_id = bucket_name_index(buckets)
    check_response(input_ids, set(name_to_id), raw)

    assignments: dict[str, str] = {}
    for item in raw:
        bucket_id = name_to_id.get(item[BUCKET_KEY])
        if bucket_id is None:
            raise InvariantViolation(
                f"accepted bucket name {item[BUCKET_KEY]!r} has no bucket id"
            )
        assignments[item[ID_KEY]] = bucket_id
    return assignments
