"""initial_ticketing_schema

Creates the ticketing core tables:
  - users                  — students, staff and admins
  - staff_mappings         — routing rules (category × block → staff)
  - tickets                — maintenance / service tickets
  - ticket_status_changes  — lifecycle audit trail
  - ticket_escalations     — escalation ladder records
  - notifications          — in-app notifications
  - scheduled_jobs         — background job registry

Tables created conditionally (IF NOT EXISTS semantics) so the revision can be
stamped on databases that already received them via db.create_all().

Revision ID: 0a1b2c3d4e51
Revises:
Create Date: 2026-10-17 09:12:40.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '0a1b2c3d4e51'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Users ─────────────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=150), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False,
                      comment="STUDENT | STAFF | ADMIN"),
            sa.Column("staff_vertical", sa.String(length=40), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )
        with op.batch_alter_table("users", schema=None) as batch_op:
            batch_op.create_index("ix_users_email", ["email"], unique=True)
            batch_op.create_index("ix_users_staff_vertical", ["staff_vertical"], unique=False)

    # ── Staff mappings ────────────────────────────────────────────────────
    if "staff_mappings" not in existing:
        op.create_table(
            "staff_mappings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("staff_id", sa.Integer(), nullable=False),
            sa.Column("hostel_block", sa.String(length=50), nullable=True,
                      comment="NULL = every block"),
            sa.Column("category", sa.String(length=80), nullable=False),
            sa.Column("priority_level", sa.Integer(), nullable=False,
                      comment="1 = first choice"),
            sa.Column("capacity_weight", sa.Numeric(precision=3, scale=2), nullable=False),
            sa.Column("expertise_level", sa.Integer(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            _ts("created_at"),
            _ts("updated_at"),
            sa.CheckConstraint("priority_level >= 1", name="ck_mapping_priority_level"),
            sa.CheckConstraint("expertise_level BETWEEN 1 AND 5", name="ck_mapping_expertise"),
            sa.CheckConstraint("capacity_weight > 0", name="ck_mapping_capacity_weight"),
            sa.ForeignKeyConstraint(["staff_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        with op.batch_alter_table("staff_mappings", schema=None) as batch_op:
            batch_op.create_index("ix_staff_mappings_staff_id", ["staff_id"], unique=False)
            batch_op.create_index("ix_mapping_lookup",
                                  ["category", "hostel_block", "is_active"], unique=False)
        op.create_index(
            "uq_mapping_active_triple", "staff_mappings",
            ["staff_id", "category", sa.text("coalesce(hostel_block, '')")],
            unique=True,
            sqlite_where=sa.text("is_active"),
            postgresql_where=sa.text("is_active"),
        )

    # ── Tickets ───────────────────────────────────────────────────────────
    if "tickets" not in existing:
        op.create_table(
            "tickets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ticket_number", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=40), nullable=True),
            sa.Column("custom_category", sa.String(length=80), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=False,
                      comment="LOW | MEDIUM | HIGH | EMERGENCY"),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("hostel_block", sa.String(length=50), nullable=True),
            sa.Column("room_number", sa.String(length=20), nullable=True),
            sa.Column("is_emergency", sa.Boolean(), nullable=False),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            _ts("assigned_at"),
            _ts("last_progress_at"),
            _ts("resolved_at"),
            sa.Column("resolved_by_id", sa.Integer(), nullable=True),
            _ts("closed_at"),
            sa.Column("reopen_count", sa.Integer(), nullable=False),
            sa.Column("is_escalated", sa.Boolean(), nullable=False),
            sa.Column("current_escalation_level", sa.Integer(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False,
                      comment="optimistic concurrency token"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["resolved_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        with op.batch_alter_table("tickets", schema=None) as batch_op:
            batch_op.create_index("ix_tickets_ticket_number", ["ticket_number"], unique=True)
            batch_op.create_index("ix_tickets_status", ["status"], unique=False)
            batch_op.create_index("ix_tickets_created_by_id", ["created_by_id"], unique=False)
            batch_op.create_index("ix_tickets_assigned_to_id", ["assigned_to_id"], unique=False)
            batch_op.create_index("ix_ticket_status_assignee",
                                  ["status", "assigned_to_id"], unique=False)

    # ── Status history ────────────────────────────────────────────────────
    if "ticket_status_changes" not in existing:
        op.create_table(
            "ticket_status_changes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ticket_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=False),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            _ts("changed_at", nullable=False),
            sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["actor_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        with op.batch_alter_table("ticket_status_changes", schema=None) as batch_op:
            batch_op.create_index("ix_ticket_status_changes_ticket_id", ["ticket_id"], unique=False)

    # ── Escalations ───────────────────────────────────────────────────────
    if "ticket_escalations" not in existing:
        op.create_table(
            "ticket_escalations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ticket_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False, comment="1..5"),
            sa.Column("escalated_from_id", sa.Integer(), nullable=True),
            sa.Column("escalated_to_id", sa.Integer(), nullable=False),
            sa.Column("escalated_by_id", sa.Integer(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("is_auto", sa.Boolean(), nullable=False),
            _ts("escalated_at", nullable=False),
            _ts("resolved_at"),
            sa.Column("resolved_by_id", sa.Integer(), nullable=True),
            sa.Column("superseded_by_id", sa.Integer(), nullable=True),
            sa.CheckConstraint("level BETWEEN 1 AND 5", name="ck_escalation_level"),
            sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["escalated_from_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["escalated_to_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["escalated_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["resolved_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["superseded_by_id"], ["ticket_escalations.id"],
                                    ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("ticket_id", "level", name="uq_escalation_ticket_level"),
        )
        with op.batch_alter_table("ticket_escalations", schema=None) as batch_op:
            batch_op.create_index("ix_ticket_escalations_ticket_id", ["ticket_id"], unique=False)
            batch_op.create_index("ix_ticket_escalations_escalated_to_id",
                                  ["escalated_to_id"], unique=False)
            batch_op.create_index("ix_escalation_active",
                                  ["ticket_id", "resolved_at", "superseded_by_id"], unique=False)

    # ── Notifications ─────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=False),
            sa.Column("ticket_id", sa.Integer(), nullable=True),
            sa.Column("escalation_id", sa.Integer(), nullable=True),
            sa.Column("kind", sa.String(length=20), nullable=False,
                      comment="assignment, escalation, status"),
            sa.Column("severity", sa.String(length=10), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False),
            _ts("read_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["escalation_id"], ["ticket_escalations.id"],
                                    ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        with op.batch_alter_table("notifications", schema=None) as batch_op:
            batch_op.create_index("ix_notifications_inbox", ["recipient_id", "is_read"], unique=False)
            batch_op.create_index("ix_notifications_ticket_id", ["ticket_id"], unique=False)

    # ── Scheduled jobs ────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("interval_minutes", sa.Integer(), nullable=False),
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


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_table("notifications")
    op.drop_table("ticket_escalations")
    op.drop_table("ticket_status_changes")
    op.drop_table("tickets")
    op.drop_table("staff_mappings")
    op.drop_table("users")
