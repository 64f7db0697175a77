"""Storage collaborator: the only place the pipeline touches the database."""
from __future__ import annotations

import logging
import random
import time
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import PersistenceError
from ..models import Bucket, Email
from ..records import BucketSnapshot, EmailRecord

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement; chunk IN (...) lookups.
IN_CLAUSE_CHUNK = 500

# update_bucket: leave a field unchanged
_KEEP = object()


def _is_sqlite_locked_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "database is locked" in msg or "sqlite_busy" in msg


def _commit_with_retry(db: Session, *, max_retries: int = 6, base_sleep_s: float = 0.05) -> None:
    """
    SQLite can transiently raise 'database is locked' during concurrent access.
    Retry commits with exponential backoff + jitter.
    """
    attempt = 0
    while True:
        try:
            db.commit()
            return
        except OperationalError as e:
            db.rollback()
            if attempt >= max_retries or not _is_sqlite_locked_error(e):
                raise
            sleep_s = min(2.0, base_sleep_s * (2 ** attempt)) + random.uniform(0, 0.05)
            time.sleep(sleep_s)
            attempt += 1


def email_to_record(row: Email) -> EmailRecord:
    return EmailRecord(
        id=row.id,
        subject=row.subject,
        sender=row.sender,
        preview=row.preview,
        sent_at=row.sent_at,
        bucket_id=row.bucket_id,
        last_synced_at=row.last_synced_at,
    )


def bucket_to_snapshot(row: Bucket) -> BucketSnapshot:
    return BucketSnapshot(id=row.id, name=row.name, description=row.description)


class EmailStore:
    """Per-user email and bucket persistence over a SQLAlchemy Session."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, what: str) -> None:
        try:
            _commit_with_retry(self.db)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to {what}: {e}") from e

    def get_known_ids(self, user_id: str, candidate_ids: Optional[Iterable[str]] = None) -> set[str]:
        """Stored thread ids for the user, optionally restricted to candidate_ids."""
        try:
            if candidate_ids is None:
                rows = self.db.execute(select(Email.id).where(Email.user_id == user_id)).scalars()
                return set(rows)
            candidates = list(dict.fromkeys(candidate_ids))
            known: set[str] = set()
            for i in range(0, len(candidates), IN_CLAUSE_CHUNK):
                chunk = candidates[i : i + IN_CLAUSE_CHUNK]
                rows = self.db.execute(
                    select(Email.id).where(Email.user_id == user_id, Email.id.in_(chunk))
                ).scalars()
                known.update(rows)
            return known
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch existing email ids: {e}") from e

    def upsert_emails(self, user_id: str, records: Sequence[EmailRecord]) -> int:
        """
        Insert new rows keyed by (user_id, id). Existing rows get their metadata
        refreshed; bucket_id is never touched here. Returns rows written.
        """
        if not records:
            return 0
        try:
            for rec in records:
                row = self.db.get(Email, (user_id, rec.id))
                if row is None:
                    self.db.add(Email(
                        user_id=user_id,
                        id=rec.id,
                        subject=rec.subject,
                        sender=rec.sender,
                        preview=rec.preview,
                        sent_at=rec.sent_at,
                        bucket_id=rec.bucket_id,
                        last_synced_at=rec.last_synced_at,
                    ))
                else:
                    row.subject = rec.subject
                    row.sender = rec.sender
                    row.preview = rec.preview
                    row.sent_at = rec.sent_at
                    row.last_synced_at = rec.last_synced_at
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to save email data: {e}") from e
        self._commit("save email data")
        return len(records)

    def get_buckets(self, user_id: str) -> list[BucketSnapshot]:
        try:
            rows = self.db.execute(
                select(Bucket).where(Bucket.user_id == user_id).order_by(Bucket.created_at, Bucket.name)
            ).scalars()
            return [bucket_to_snapshot(b) for b in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch buckets: {e}") from e

    def ensure_default_buckets(self, user_id: str, names: Optional[Sequence[str]] = None) -> list[BucketSnapshot]:
        """Return the user's buckets, creating the default set first if the user has none."""
        buckets = self.get_buckets(user_id)
        if buckets:
            return buckets
        names = list(names if names is not None else settings.default_bucket_names)
        logger.info(f"No buckets for user {user_id}; creating {len(names)} defaults")
        try:
            self.db.add_all([Bucket(user_id=user_id, name=name, description=None) for name in names])
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to create default buckets: {e}") from e
        self._commit("create default buckets")
        return self.get_buckets(user_id)

    def create_bucket(self, user_id: str, name: str, description: Optional[str] = None) -> BucketSnapshot:
        bucket = Bucket(user_id=user_id, name=name, description=description)
        self.db.add(bucket)
        self._commit(f"create bucket {name!r}")
        return bucket_to_snapshot(bucket)

    def update_bucket(self, user_id: str, bucket_id: str, name=_KEEP, description=_KEEP) -> Optional[BucketSnapshot]:
        """Rename and/or redescribe a bucket. Returns None if the user has no such bucket."""
        try:
            bucket = self.db.execute(
                select(Bucket).where(Bucket.user_id == user_id, Bucket.id == bucket_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch bucket {bucket_id}: {e}") from e
        if bucket is None:
            return None
        if name is not _KEEP:
            bucket.name = name
        if description is not _KEEP:
            bucket.description = description
        self._commit(f"update bucket {bucket_id}")
        return bucket_to_snapshot(bucket)

    def delete_bucket(self, user_id: str, bucket_id: str) -> Optional[int]:
        """
        Delete a bucket; its emails become unclassified. Returns how many emails
        were unassigned, or None if the user has no such bucket.
        """
        try:
            exists = self.db.execute(
                select(Bucket.id).where(Bucket.user_id == user_id, Bucket.id == bucket_id)
            ).first()
            if exists is None:
                return None
            # Explicit so SQLite without foreign_keys=ON behaves like ON DELETE SET NULL
            unassigned = self.db.execute(
                update(Email)
                .where(Email.user_id == user_id, Email.bucket_id == bucket_id)
                .values(bucket_id=None)
            ).rowcount
            self.db.execute(delete(Bucket).where(Bucket.user_id == user_id, Bucket.id == bucket_id))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete bucket {bucket_id}: {e}") from e
        self._commit(f"delete bucket {bucket_id}")
        logger.info(f"User {user_id}: deleted bucket {bucket_id}, {unassigned} emails now unclassified")
        return unassigned

    def list_emails(self, user_id: str, limit: Optional[int] = None) -> list[EmailRecord]:
        """Stored emails, newest first with undated emails last."""
        stmt = (
            select(Email)
            .where(Email.user_id == user_id)
            .order_by(Email.sent_at.is_(None), Email.sent_at.desc(), Email.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            return [email_to_record(row) for row in self.db.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch emails: {e}") from e

    def list_emails_with_bucket_names(self, user_id: str, limit: int = 200) -> list[tuple[EmailRecord, Optional[str]]]:
        stmt = (
            select(Email, Bucket.name)
            .outerjoin(Bucket, Email.bucket_id == Bucket.id)
            .where(Email.user_id == user_id)
            .order_by(Email.sent_at.is_(None), Email.sent_at.desc(), Email.id)
            .limit(limit)
        )
        try:
            return [(email_to_record(row), name) for row, name in self.db.execute(stmt).all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch emails for display: {e}") from e

    def upsert_bucket_assignment(self, user_id: str, email_id: str, bucket_id: str) -> bool:
        """Set bucket_id on one stored email. Returns False if the email is not stored."""
        try:
            row = self.db.get(Email, (user_id, email_id))
            if row is None:
                return False
            row.bucket_id = bucket_id
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to assign bucket for {email_id}: {e}") from e
        self._commit(f"assign bucket for {email_id}")
        return True

    def apply_assignments(self, user_id: str, assignments: Mapping[str, str]) -> tuple[int, list[str]]:
        """
        Write every {email_id: bucket_id} in one transaction. Idempotent. Returns
        (rows updated, warnings); unknown ids are reported as warnings.
        """
        if not assignments:
            return 0, []
        warnings: list[str] = []
        updated = 0
        try:
            for email_id, bucket_id in assignments.items():
                row = self.db.get(Email, (user_id, email_id))
                if row is None:
                    warnings.append(f"Email {email_id} not stored; assignment skipped")
                    continue
                row.bucket_id = bucket_id
                updated += 1
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to save bucket assignments: {e}") from e
        self._commit("save bucket assignments")
        return updated, warnings
