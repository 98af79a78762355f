"""Create ai_jobs queue table and audit log."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ai_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("conversation_id", sa.String(), nullable=False),
        sa.Column("trigger_message_id", sa.String(), nullable=True),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("result_message_id", sa.String(), nullable=True),
        sa.Column("response_text", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("fragments_used_json", sa.Text(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_cost", sa.Float(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_ai_jobs_status",
        ),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_ai_jobs_confidence_range",
        ),
    )
    op.create_index("idx_ai_jobs_claim", "ai_jobs", ["status", "created_at", "job_id"])
    op.create_index("idx_ai_jobs_org_time", "ai_jobs", ["organization_id", "created_at"])
    op.create_index("idx_ai_jobs_conversation", "ai_jobs", ["conversation_id", "status"])
    op.create_index("ix_ai_jobs_organization_id", "ai_jobs", ["organization_id"])
    op.create_index("ix_ai_jobs_job_type", "ai_jobs", ["job_type"])
    op.create_index("ix_ai_jobs_status", "ai_jobs", ["status"])
    op.create_index("ix_ai_jobs_worker_id", "ai_jobs", ["worker_id"])
    op.create_index("ix_ai_jobs_error_code", "ai_jobs", ["error_code"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_audit_logs_entity_time",
        "audit_logs",
        ["entity_type", "entity_id", "created_at"],
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("idx_audit_logs_entity_time", table_name="audit_logs")
    op.drop_table("audit_logs")
    for index_name in (
        "ix_ai_jobs_error_code",
        "ix_ai_jobs_worker_id",
        "ix_ai_jobs_status",
        "ix_ai_jobs_job_type",
        "ix_ai_jobs_organization_id",
        "idx_ai_jobs_conversation",
        "idx_ai_jobs_org_time",
        "idx_ai_jobs_claim",
    ):
        op.drop_index(index_name, table_name="ai_jobs")
    op.drop_table("ai_jobs")
