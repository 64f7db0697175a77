"""Initial schema: buckets and emails.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "buckets",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "name", name="uq_buckets_user_name"),
    )
    op.create_index("ix_buckets_user_id", "buckets", ["user_id"])

    op.create_table(
        "emails",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("sender", sa.String(), nullable=True),
        sa.Column("preview", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("bucket_id", sa.String(length=36), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["bucket_id"], ["buckets.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("user_id", "id"),
    )
    op.create_index("ix_emails_bucket_id", "emails", ["bucket_id"])
    op.create_index("ix_emails_user_sent_at", "emails", ["user_id", "sent_at"])
    op.create_index("ix_emails_user_bucket", "emails", ["user_id", "bucket_id"])


def downgrade() -> None:
    op.drop_index("ix_emails_user_bucket", table_name="emails")
    op.drop_index("ix_emails_user_sent_at", table_name="emails")
    op.drop_index("ix_emails_bucket_id", table_name="emails")
    op.drop_table("emails")
    op.drop_index("ix_buckets_user_id", table_name="buckets")
    op.drop_table("buckets")
