"""partnerhub_initial_schema

Organizations, users, projects, stakeholders, tasks, escalation rules/logs/
trigger states, progress reports, notifications, scheduled jobs, email logs.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b10"
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
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
        )
        op.create_index("ix_users_organization_id", "users", ["organization_id"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="active"),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_organization_id", "projects", ["organization_id"])

    if "project_stakeholders" not in existing_tables:
        op.create_table(
            "project_stakeholders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("tier", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "user_id", name="uq_project_stakeholder"),
        )
        op.create_index("ix_project_stakeholders_project_id", "project_stakeholders", ["project_id"])
        op.create_index("ix_project_stakeholders_user_id", "project_stakeholders", ["user_id"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="todo"),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assignee_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
        op.create_index("ix_tasks_due_date", "tasks", ["due_date"])

    if "escalation_rules" not in existing_tables:
        op.create_table(
            "escalation_rules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("trigger_type", sa.String(length=30), nullable=False),
            sa.Column("trigger_value", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_by", sa.Integer(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.CheckConstraint("trigger_value >= 1", name="ck_escalation_rules_trigger_value"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_escalation_rules_project_id", "escalation_rules", ["project_id"])
        op.create_index("ix_escalation_rules_status_priority", "escalation_rules", ["status", "priority"])

    if "escalation_logs" not in existing_tables:
        op.create_table(
            "escalation_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("rule_id", sa.Integer(), nullable=True),
            sa.Column("rule_name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("trigger_type", sa.String(length=30), nullable=True),
            sa.Column("task_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("occurrence_key", sa.String(length=200), nullable=False),
            sa.Column("claim_key", sa.String(length=200), nullable=True),
            sa.Column("action_detail", sa.Text(), nullable=True),
            sa.Column("notified_users", sa.JSON(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("tick_id", sa.String(length=64), nullable=True),
            _ts("executed_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["rule_id"], ["escalation_rules.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            # NULLs never collide, so released (failed) rows do not block a re-claim
            sa.UniqueConstraint("claim_key", name="uq_escalation_logs_claim_key"),
        )
        op.create_index("ix_escalation_logs_rule_task", "escalation_logs", ["rule_id", "task_id"])
        op.create_index("ix_escalation_logs_task_id", "escalation_logs", ["task_id"])
        op.create_index("ix_escalation_logs_project_id", "escalation_logs", ["project_id"])
        op.create_index("ix_escalation_logs_status", "escalation_logs", ["status"])
        op.create_index("ix_escalation_logs_occurrence_key", "escalation_logs", ["occurrence_key"])
        op.create_index("ix_escalation_logs_created_at", "escalation_logs", ["created_at"])

    if "escalation_trigger_states" not in existing_tables:
        op.create_table(
            "escalation_trigger_states",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("rule_id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("last_matched", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("cycle", sa.Integer(), nullable=False, server_default="0"),
            _ts("evaluated_at"),
            sa.ForeignKeyConstraint(["rule_id"], ["escalation_rules.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("rule_id", "task_id", name="uq_trigger_state_rule_task"),
        )

    if "progress_reports" not in existing_tables:
        op.create_table(
            "progress_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("reporter_name", sa.String(length=200), nullable=False),
            sa.Column("reporter_email", sa.String(length=255), nullable=False),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("attachment_urls", sa.JSON(), nullable=True),
            sa.Column("report_token", sa.String(length=128), nullable=False),
            _ts("token_expires_at", nullable=False),
            _ts("deactivated_at"),
            sa.Column("is_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("submitted_at"),
            sa.Column("reviewer_id", sa.Integer(), nullable=True),
            sa.Column("reviewer_comment", sa.Text(), nullable=True),
            _ts("reviewed_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_progress_reports_progress"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("report_token", name="uq_progress_reports_token"),
        )
        op.create_index("ix_progress_reports_task_id", "progress_reports", ["task_id"])
        op.create_index(
            "ix_progress_reports_unsubmitted_expiry", "progress_reports",
            ["is_submitted", "token_expires_at"],
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("recipient_email", sa.String(length=255), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

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
            sa.Column("lease_owner", sa.String(length=64), nullable=True),
            _ts("lease_expires_at"),
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

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_name", sa.String(length=150), nullable=True),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            _ts("sent_at"),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in (
        "email_logs", "scheduled_jobs", "notifications", "progress_reports",
        "escalation_trigger_states", "escalation_logs", "escalation_rules",
        "tasks", "project_stakeholders", "projects", "users", "organizations",
    ):
        if table in existing_tables:
            op.drop_table(table)
