"""Agency task records, transition events and dead-letter store."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agency_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("software_name", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("hops", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ttl_max", sa.Integer(), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consecutive_successes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "revised_plan_pending",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("state_hashes_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("session_ids_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("documents_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("plan_json", sa.Text(), nullable=True),
        sa.Column("classification_json", sa.Text(), nullable=True),
        sa.Column("last_result_json", sa.Text(), nullable=True),
        sa.Column("last_verification_json", sa.Text(), nullable=True),
        sa.Column("last_analysis_json", sa.Text(), nullable=True),
        sa.Column("source_json", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("idx_agency_tasks_status", "agency_tasks", ["status"])
    op.create_index("idx_agency_tasks_created_at", "agency_tasks", ["created_at"])

    op.create_table(
        "agency_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["agency_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_agency_task_events_task_time",
        "agency_task_events",
        ["task_id", "created_at"],
    )

    op.create_table(
        "agency_dead_letters",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("hops", sa.Integer(), nullable=False),
        sa.Column("ttl_max", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("record_json", sa.Text(), nullable=False),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )


def downgrade() -> None:
    op.drop_table("agency_dead_letters")
    op.drop_index("idx_agency_task_events_task_time", table_name="agency_task_events")
    op.drop_table("agency_task_events")
    op.drop_index("idx_agency_tasks_created_at", table_name="agency_tasks")
    op.drop_index("idx_agency_tasks_status", table_name="agency_tasks")
    op.drop_table("agency_tasks")
