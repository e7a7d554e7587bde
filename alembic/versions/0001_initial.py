"""initial brandbite schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-01-05 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        # ORM-managed updated_at (no database trigger).
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "user_accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255)),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("active_company_id", sa.String(length=36)),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("paused_at", sa.DateTime(timezone=True)),
        sa.Column("pause_expires_at", sa.DateTime(timezone=True)),
        sa.Column("pause_type", sa.String(length=16)),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_user_accounts_role", "user_accounts", ["role"])
    op.create_index("ix_user_accounts_active_company", "user_accounts", ["active_company_id"])

    op.create_table(
        "plans",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("monthly_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_cents", sa.Integer()),
        sa.Column("description", sa.Text()),
        sa.Column("stripe_product_id", sa.String(length=255)),
        sa.Column("stripe_price_id", sa.String(length=255)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_table(
        "job_types",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(length=120)),
        sa.Column("token_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("creative_payout_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )

    op.create_table(
        "companies",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("plan_id", sa.String(length=36), sa.ForeignKey("plans.id")),
        sa.Column("token_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("auto_assign_default_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("stripe_customer_id", sa.String(length=255)),
        sa.Column("stripe_subscription_id", sa.String(length=255)),
        sa.Column("billing_status", sa.String(length=32)),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_companies_stripe_subscription_id", "companies", ["stripe_subscription_id"])

    op.create_table(
        "company_members",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_in_company", sa.String(length=16), nullable=False),
        _created_at(),
        sa.UniqueConstraint("company_id", "user_id", name="uq_company_members_company_user"),
    )
    op.create_index("ix_company_members_user", "company_members", ["user_id"])

    op.create_table(
        "company_invites",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("invited_by_user_id", sa.String(length=36), sa.ForeignKey("user_accounts.id")),
        sa.Column("role_in_company", sa.String(length=16), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False, unique=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        _created_at(),
        sa.Column("accepted_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_company_invites_company_status", "company_invites", ["company_id", "status"])
    op.create_index("ix_company_invites_email", "company_invites", ["email"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=3)),
        sa.Column("auto_assign_mode", sa.String(length=16), nullable=False, server_default="INHERIT"),
        _created_at(),
        sa.UniqueConstraint("company_id", "code", name="uq_projects_company_code"),
    )

    op.create_table(
        "creative_skills",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("creative_id", sa.String(length=36), sa.ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("job_type_id", sa.String(length=36), sa.ForeignKey("job_types.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("creative_id", "job_type_id", name="uq_creative_skills_creative_job_type"),
    )
    op.create_index("ix_creative_skills_creative_id", "creative_skills", ["creative_id"])
    op.create_index("ix_creative_skills_job_type_id", "creative_skills", ["job_type_id"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="TODO"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="MEDIUM"),
        sa.Column("due_date", sa.DateTime(timezone=True)),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id")),
        sa.Column("created_by_id", sa.String(length=36), sa.ForeignKey("user_accounts.id"), nullable=False),
        sa.Column("creative_id", sa.String(length=36), sa.ForeignKey("user_accounts.id")),
        sa.Column("job_type_id", sa.String(length=36), sa.ForeignKey("job_types.id")),
        sa.Column("company_ticket_number", sa.Integer()),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("token_cost_override", sa.Integer()),
        sa.Column("creative_payout_override", sa.Integer()),
        sa.Column("revision_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("company_id", "company_ticket_number", name="uq_tickets_company_number"),
    )
    op.create_index("ix_tickets_company_status", "tickets", ["company_id", "status"])
    op.create_index("ix_tickets_creative_status", "tickets", ["creative_id", "status"])
    op.create_index("ix_tickets_creative_completed", "tickets", ["creative_id", "completed_at"])

    op.create_table(
        "ticket_assignment_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("creative_id", sa.String(length=36), sa.ForeignKey("user_accounts.id")),
        sa.Column("reason", sa.String(length=16), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_ticket_assignment_logs_ticket_id", "ticket_assignment_logs", ["ticket_id"])

    op.create_table(
        "ticket_revisions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("submitted_by_creative_id", sa.String(length=36), sa.ForeignKey("user_accounts.id"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("creative_message", sa.Text()),
        sa.Column("feedback_by_customer_id", sa.String(length=36), sa.ForeignKey("user_accounts.id")),
        sa.Column("feedback_at", sa.DateTime(timezone=True)),
        sa.Column("feedback_message", sa.Text()),
        sa.UniqueConstraint("ticket_id", "version", name="uq_ticket_revisions_version"),
    )

    op.create_table(
        "ticket_comments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("author_id", sa.String(length=36), sa.ForeignKey("user_accounts.id"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_ticket_comments_ticket_created", "ticket_comments", ["ticket_id", "created_at"])

    op.create_table(
        "token_ledger",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id")),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("user_accounts.id")),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id")),
        sa.Column("direction", sa.String(length=8), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_token_ledger_amount_positive"),
    )
    op.create_index("ix_token_ledger_company_created", "token_ledger", ["company_id", "created_at"])
    op.create_index("ix_token_ledger_user_created", "token_ledger", ["user_id", "created_at"])
    op.create_index("ix_token_ledger_ticket_reason", "token_ledger", ["ticket_id", "reason"])

    op.create_table(
        "payout_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("min_completed_tickets", sa.Integer(), nullable=False),
        sa.Column("time_window_days", sa.Integer(), nullable=False),
        sa.Column("payout_percent", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "withdrawals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("creative_id", sa.String(length=36), sa.ForeignKey("user_accounts.id"), nullable=False),
        sa.Column("amount_tokens", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("notes", sa.Text()),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _created_at(),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_withdrawals_creative_created", "withdrawals", ["creative_id", "created_at"])
    op.create_index("ix_withdrawals_status", "withdrawals", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("ticket_id", sa.String(length=36), sa.ForeignKey("tickets.id", ondelete="SET NULL")),
        sa.Column("actor_id", sa.String(length=36), sa.ForeignKey("user_accounts.id")),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read"])
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("user_id", "type", name="uq_notification_preferences_user_type"),
    )

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        _updated_at(),
    )

    op.create_table(
        "stripe_events",
        sa.Column("event_id", sa.String(length=255), primary_key=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128)),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id", ondelete="SET NULL")),
        sa.Column("last_error", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_stripe_events_payload_hash", "stripe_events", ["payload_hash"])
    op.create_index("ix_stripe_events_company_id", "stripe_events", ["company_id"])


def downgrade() -> None:
    op.drop_table("stripe_events")
    op.drop_table("app_settings")
    op.drop_table("notification_preferences")
    op.drop_table("notifications")
    op.drop_table("withdrawals")
    op.drop_table("payout_rules")
    op.drop_table("token_ledger")
    op.drop_table("ticket_comments")
    op.drop_table("ticket_revisions")
    op.drop_table("ticket_assignment_logs")
    op.drop_table("tickets")
    op.drop_table("creative_skills")
    op.drop_table("projects")
    op.drop_table("company_invites")
    op.drop_table("company_members")
    op.drop_table("companies")
    op.drop_table("job_types")
    op.drop_table("plans")
    op.drop_table("user_accounts")
