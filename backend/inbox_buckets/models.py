"""SQLAlchemy models."""
import uuid

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .records import utc_now

Base = declarative_base()


def _new_bucket_id() -> str:
    return str(uuid.uuid4())


class Bucket(Base):
    """User-defined category; `name` is the label shown to the classifier."""
    __tablename__ = "buckets"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_buckets_user_name"),)

    id = Column(String(36), primary_key=True, default=_new_bucket_id)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    emails = relationship("Email", back_populates="bucket", passive_deletes=True)


class Email(Base):
    """One remote thread. `id` is the remote thread id and is never regenerated."""
    __tablename__ = "emails"

    user_id = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    subject = Column(String, nullable=True)
    sender = Column(String, nullable=True)
    preview = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    # null = unclassified; written only by the classification pipeline
    bucket_id = Column(String(36), ForeignKey("buckets.id", ondelete="SET NULL"), nullable=True, index=True)
    last_synced_at = Column(DateTime, nullable=True)

    bucket = relationship("Bucket", back_populates="emails")


Index("ix_emails_user_sent_at", Email.user_id, Email.sent_at)
Index("ix_emails_user_bucket", Email.user_id, Email.bucket_id)
