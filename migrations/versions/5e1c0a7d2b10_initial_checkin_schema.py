"""initial_checkin_schema

Organizations, teams, members, themes, conversations with history and
results, insights, top-actions plans, audit, AI usage and job records.

Revision ID: 5e1c0a7d2b10
Revises:
Create Date: 2025-05-12 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1c0a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("active_months", sa.JSON(), nullable=False),
            sa.Column("mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("anonymize_after_days", sa.Integer(), nullable=False, server_default="60"),
            sa.Column("delete_after_days", sa.Integer(), nullable=False, server_default="365"),
            sa.Column("description", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "teams" not in existing_tables:
        op.create_table(
            "teams",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("archived_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "name", name="uq_team_org_name"),
        )
        op.create_index("ix_teams_organization_id", "teams", ["organization_id"])

    if "members" not in existing_tables:
        op.create_table(
            "members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("team_id", sa.Integer(), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_members_organization_id", "members", ["organization_id"])
        op.create_index("ix_members_team_id", "members", ["team_id"])

    if "themes" not in existing_tables:
        op.create_table(
            "themes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("default_visibility", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("is_ready", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("gives_summary", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("scoring_rubric", sa.Text(), nullable=True),
            sa.Column("goal", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "theme_questions" not in existing_tables:
        op.create_table(
            "theme_questions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("theme_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("text", sa.Text(), nullable=False),
            sa.Column("explanation", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("theme_id", "position", name="uq_theme_question_position"),
        )
        op.create_index("ix_theme_questions_theme_id", "theme_questions", ["theme_id"])

    if "theme_overrides" not in existing_tables:
        op.create_table(
            "theme_overrides",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("theme_id", sa.Integer(), nullable=False),
            sa.Column("team_id", sa.Integer(), nullable=True),
            sa.Column("visible", sa.Boolean(), nullable=False),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_theme_overrides_organization_id", "theme_overrides", ["organization_id"])
        op.create_index(
            "uq_theme_override_org_scope", "theme_overrides", ["organization_id", "theme_id"],
            unique=True,
            postgresql_where=sa.text("team_id IS NULL"),
            sqlite_where=sa.text("team_id IS NULL"),
        )
        op.create_index(
            "uq_theme_override_team_scope", "theme_overrides", ["organization_id", "theme_id", "team_id"],
            unique=True,
            postgresql_where=sa.text("team_id IS NOT NULL"),
            sqlite_where=sa.text("team_id IS NOT NULL"),
        )

    if "conversations" not in existing_tables:
        op.create_table(
            "conversations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("theme_id", sa.Integer(), nullable=False),
            sa.Column("team_id", sa.Integer(), nullable=True),
            sa.Column("period_key", sa.String(length=7), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("completion_reason", sa.String(length=20), nullable=True),
            _ts("started_at", nullable=False),
            _ts("ended_at"),
            _ts("anonymized_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_conversations_member_id", "conversations", ["member_id"])
        op.create_index("ix_conversations_team_id", "conversations", ["team_id"])
        op.create_index("ix_conversation_org_theme", "conversations", ["organization_id", "theme_id"])
        op.create_index("ix_conversation_status_ended", "conversations", ["status", "ended_at"])
        op.create_index(
            "uq_conversation_member_theme_period", "conversations",
            ["member_id", "theme_id", "period_key"],
            unique=True,
            postgresql_where=sa.text("anonymized_at IS NULL"),
            sqlite_where=sa.text("anonymized_at IS NULL"),
        )

    if "conversation_history_items" not in existing_tables:
        op.create_table(
            "conversation_history_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=True),
            sa.Column("text", sa.Text(), nullable=False, server_default=""),
            sa.Column("answer", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["question_id"], ["theme_questions.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("conversation_id", "sequence", name="uq_history_conversation_sequence"),
        )
        op.create_index("ix_conversation_history_items_conversation_id",
                        "conversation_history_items", ["conversation_id"])

    if "conversation_results" not in existing_tables:
        op.create_table(
            "conversation_results",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("theme_id", sa.Integer(), nullable=False),
            sa.Column("period_key", sa.String(length=7), nullable=False),
            sa.Column("round_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("summary", sa.Text(), nullable=True),
            sa.Column("score", sa.Integer(), nullable=True),
            sa.Column("summary_fallback", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("actions", sa.JSON(), nullable=True),
            sa.Column("actions_rationale", sa.Text(), nullable=True),
            _ts("summary_generated_at"),
            _ts("actions_generated_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("conversation_id"),
        )
        op.create_index("ix_conversation_results_member_id", "conversation_results", ["member_id"])
        op.create_index("ix_conversation_results_theme_id", "conversation_results", ["theme_id"])

    if "theme_evaluations" not in existing_tables:
        op.create_table(
            "theme_evaluations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("theme_id", sa.Integer(), nullable=False),
            sa.Column("score", sa.Integer(), nullable=False),
            sa.Column("remark", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("conversation_id"),
        )
        op.create_index("ix_theme_evaluations_member_id", "theme_evaluations", ["member_id"])

    if "organization_insights" not in existing_tables:
        op.create_table(
            "organization_insights",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("theme_id", sa.Integer(), nullable=False),
            sa.Column("team_id", sa.Integer(), nullable=True),
            sa.Column("summary", sa.Text(), nullable=True),
            sa.Column("advice", sa.JSON(), nullable=True),
            sa.Column("signal_words", sa.JSON(), nullable=True),
            sa.Column("mean_score", sa.Float(), nullable=True),
            sa.Column("conversation_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_member_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="unavailable"),
            _ts("generated_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_organization_insights_organization_id",
                        "organization_insights", ["organization_id"])
        op.create_index(
            "uq_insight_org_scope", "organization_insights", ["organization_id", "theme_id"],
            unique=True,
            postgresql_where=sa.text("team_id IS NULL"),
            sqlite_where=sa.text("team_id IS NULL"),
        )
        op.create_index(
            "uq_insight_team_scope", "organization_insights", ["organization_id", "theme_id", "team_id"],
            unique=True,
            postgresql_where=sa.text("team_id IS NOT NULL"),
            sqlite_where=sa.text("team_id IS NOT NULL"),
        )

    if "top_actions_plans" not in existing_tables:
        op.create_table(
            "top_actions_plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("member_id", sa.Integer(), nullable=False),
            sa.Column("period_key", sa.String(length=7), nullable=False),
            sa.Column("actions", sa.JSON(), nullable=False),
            sa.Column("general_rationale", sa.Text(), nullable=True),
            sa.Column("source_conversation_ids", sa.JSON(), nullable=False),
            _ts("generated_at"),
            sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("member_id", "period_key", name="uq_top_actions_member_period"),
        )
        op.create_index("ix_top_actions_plans_member_id", "top_actions_plans", ["member_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("actor_member_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["actor_member_id"], ["members.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_org", "audit_logs", ["organization_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "ai_usage_logs" not in existing_tables:
        op.create_table(
            "ai_usage_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(length=30), nullable=False),
            sa.Column("model", sa.String(length=80), nullable=False),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("total_tokens", sa.Integer(), nullable=True),
            sa.Column("cost_usd", sa.Float(), nullable=True),
            sa.Column("latency_ms", sa.Integer(), nullable=True),
            sa.Column("user", sa.String(length=150), nullable=True),
            sa.Column("purpose", sa.String(length=100), nullable=True),
            sa.Column("organization_id", sa.Integer(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            _ts("last_run_at"),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


_DROP_ORDER = (
    "scheduled_jobs", "ai_usage_logs", "audit_logs", "top_actions_plans",
    "organization_insights", "theme_evaluations", "conversation_results",
    "conversation_history_items", "conversations", "theme_overrides",
    "theme_questions", "themes", "members", "teams", "organizations",
)


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())
    for table in _DROP_ORDER:
        if table in existing_tables:
            op.drop_table(table)
