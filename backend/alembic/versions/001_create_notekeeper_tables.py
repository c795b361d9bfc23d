"""Create notes, archive_jobs and queue_messages tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17 00:00:00.000000+00:00

What:  Initial schema: notes, the archive job status table and the table
       backing the message queue.
How:   Portable column types only, so the same migration runs on PostgreSQL
       and SQLite. Ids are UUID text generated by the application.

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_STATES = ("Queued", "InProgress", "Completed", "Failed")


def upgrade() -> None:
    op.create_table(
        "notes",
        sa.Column(
            "id",
            sa.String(36),
            nullable=False,
            comment="Opaque note id; also the attachment namespace name",
        ),
        sa.Column("summary", sa.String(60), nullable=False),
        sa.Column("details", sa.String(1024), nullable=False),
        sa.Column("created_date_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_date_utc", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_notes_created_date_utc", "notes", ["created_date_utc"])

    op.create_table(
        "archive_jobs",
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("job_id", sa.String(64), nullable=False),
        # Stored by value; matches the non-native Enum on the model
        sa.Column(
            "state",
            sa.Enum(*JOB_STATES, name="archive_job_state", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("detail", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.String(32), nullable=False),
        sa.PrimaryKeyConstraint("owner_id", "job_id"),
    )

    op.create_table(
        "queue_messages",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("queue_name", sa.String(63), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("visible_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dequeue_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pop_receipt", sa.String(32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    # Receive scans visible messages of one queue
    op.create_index(
        "idx_queue_messages_visible",
        "queue_messages",
        ["queue_name", "visible_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_queue_messages_visible", table_name="queue_messages")
    op.drop_table("queue_messages")
    op.drop_table("archive_jobs")
    op.drop_index("idx_notes_created_date_utc", table_name="notes")
    op.drop_table("notes")
