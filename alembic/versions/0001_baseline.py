"""Baseline: conversations, actions, scheduled queries, suggestions, jobs

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ask_conversations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("is_pinned", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_ask_conversations_listing",
        "ask_conversations",
        ["project_id", "is_pinned", "last_message_at"],
    )
    op.create_index("idx_ask_conversations_user", "ask_conversations", ["user_id", "created_at"])

    op.create_table(
        "ask_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("conversation_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("sources", postgresql.JSONB(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("query_type", sa.String(length=30), nullable=True),
        sa.Column("feedback", sa.String(length=10), nullable=True),
        sa.Column("feedback_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_voice_input", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("voice_duration_seconds", sa.Float(), nullable=True),
        sa.Column("action_type", sa.String(length=50), nullable=True),
        sa.Column("action_intent", postgresql.JSONB(), nullable=True),
        sa.Column("action_status", sa.String(length=20), nullable=True),
        sa.Column("action_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["ask_conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("conversation_id", "position", name="uq_ask_messages_position"),
    )

    op.create_table(
        "ask_action_results",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("message_id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("created_resource_url", sa.String(length=500), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["message_id"], ["ask_messages.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id"),
    )

    op.create_table(
        "ask_scheduled_queries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("query_text", sa.Text(), nullable=False),
        sa.Column("frequency", sa.String(length=10), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=True),
        sa.Column("day_of_month", sa.SmallInteger(), nullable=True),
        sa.Column("time_utc", sa.String(length=5), server_default=sa.text("'09:00'"), nullable=False),
        sa.Column("delivery_method", sa.String(length=10), nullable=False),
        sa.Column("slack_channel_id", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_delivery_status", sa.String(length=20), nullable=True),
        sa.Column("last_delivery_error", sa.Text(), nullable=True),
        sa.Column("last_conversation_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["last_conversation_id"], ["ask_conversations.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_ask_scheduled_queries_due", "ask_scheduled_queries", ["is_active", "next_run_at"]
    )
    op.create_index("idx_ask_scheduled_queries_project", "ask_scheduled_queries", ["project_id"])

    op.create_table(
        "ask_proactive_suggestions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("suggestion_type", sa.String(length=30), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("query_suggestion", sa.Text(), nullable=False),
        sa.Column("context_data", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'active'"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acted_upon_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_ask_suggestions_project_status",
        "ask_proactive_suggestions",
        ["project_id", "status", "created_at"],
    )
    op.create_index(
        "idx_ask_suggestions_project_type",
        "ask_proactive_suggestions",
        ["project_id", "suggestion_type", "created_at"],
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("job_type", sa.String(length=50), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default=sa.text("3"), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_jobs_pending", "jobs", ["status", "run_at"])
    op.create_index("uq_job_idempotency", "jobs", ["idempotency_key"], unique=True)


def downgrade() -> None:
    op.drop_index("uq_job_idempotency", table_name="jobs")
    op.drop_index("idx_jobs_pending", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("idx_ask_suggestions_project_type", table_name="ask_proactive_suggestions")
    op.drop_index("idx_ask_suggestions_project_status", table_name="ask_proactive_suggestions")
    op.drop_table("ask_proactive_suggestions")
    op.drop_index("idx_ask_scheduled_queries_project", table_name="ask_scheduled_queries")
    op.drop_index("idx_ask_scheduled_queries_due", table_name="ask_scheduled_queries")
    op.drop_table("ask_scheduled_queries")
    op.drop_table("ask_action_results")
    op.drop_table("ask_messages")
    op.drop_index("idx_ask_conversations_user", table_name="ask_conversations")
    op.drop_index("idx_ask_conversations_listing", table_name="ask_conversations")
    op.drop_table("ask_conversations")
