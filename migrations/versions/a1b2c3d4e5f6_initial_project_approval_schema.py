"""initial_project_approval_schema

Create lookup, auth, project, approval workflow and audit tables.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for lookup in ("project_types", "industries", "sectors"):
        if lookup not in existing_tables:
            op.create_table(
                lookup,
                sa.Column("id", sa.Integer(), nullable=False),
                sa.Column("name", sa.String(length=100), nullable=False),
                sa.Column("description", sa.Text(), nullable=True),
                _ts("created_at"),
                sa.PrimaryKeyConstraint("id"),
                sa.UniqueConstraint("name"),
            )

    if "project_stages" not in existing_tables:
        op.create_table(
            "project_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "project_statuses" not in existing_tables:
        op.create_table(
            "project_statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("color_code", sa.String(length=7), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_system_role", sa.Boolean(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("resource", sa.String(length=50), nullable=False),
            sa.Column("action", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("permission_id", sa.Integer(), nullable=False),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("default_role_id", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["default_role_id"], ["roles.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_default_role_id", "users", ["default_role_id"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_code", sa.String(length=50), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("project_type_id", sa.Integer(), nullable=True),
            sa.Column("industry_id", sa.Integer(), nullable=True),
            sa.Column("sector_id", sa.Integer(), nullable=True),
            sa.Column("estimated_cost", sa.Numeric(15, 2), nullable=True),
            sa.Column("actual_cost", sa.Numeric(15, 2), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=True),
            sa.Column("current_stage_id", sa.Integer(), nullable=False),
            sa.Column("status_id", sa.Integer(), nullable=False),
            sa.Column("proposal_date", sa.Date(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("target_completion_date", sa.Date(), nullable=True),
            sa.Column("actual_completion_date", sa.Date(), nullable=True),
            sa.Column("location_address", sa.Text(), nullable=True),
            sa.Column("location_lat", sa.Numeric(10, 8), nullable=True),
            sa.Column("location_lng", sa.Numeric(11, 8), nullable=True),
            sa.Column("project_officer_id", sa.Integer(), nullable=True),
            sa.Column("workgroup_head_id", sa.Integer(), nullable=True),
            sa.Column("proponent_name", sa.String(length=255), nullable=True),
            sa.Column("proponent_contact", sa.String(length=255), nullable=True),
            sa.Column("proponent_email", sa.String(length=255), nullable=True),
            sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.Integer(), nullable=False),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
            sa.ForeignKeyConstraint(["project_type_id"], ["project_types.id"]),
            sa.ForeignKeyConstraint(["industry_id"], ["industries.id"]),
            sa.ForeignKeyConstraint(["sector_id"], ["sectors.id"]),
            sa.ForeignKeyConstraint(["current_stage_id"], ["project_stages.id"]),
            sa.ForeignKeyConstraint(["status_id"], ["project_statuses.id"]),
            sa.ForeignKeyConstraint(["project_officer_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["workgroup_head_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_code"),
        )
        op.create_index("ix_projects_project_type_id", "projects", ["project_type_id"])
        op.create_index("ix_projects_current_stage_id", "projects", ["current_stage_id"])
        op.create_index("ix_projects_status_id", "projects", ["status_id"])
        op.create_index("ix_projects_is_archived", "projects", ["is_archived"])

    for table, ref, prefix in (
        ("project_stage_history", "project_stages", "stage"),
        ("project_status_history", "project_statuses", "status"),
    ):
        if table in existing_tables:
            continue
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column(f"from_{prefix}_id", sa.Integer(), nullable=True),
            sa.Column(f"to_{prefix}_id", sa.Integer(), nullable=False),
            sa.Column("changed_by", sa.Integer(), nullable=False),
            sa.Column("change_reason", sa.Text(), nullable=True),
            _ts("changed_at", nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint([f"from_{prefix}_id"], [f"{ref}.id"]),
            sa.ForeignKeyConstraint([f"to_{prefix}_id"], [f"{ref}.id"]),
            sa.ForeignKeyConstraint(["changed_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(f"ix_{prefix}_history_project_changed", table, ["project_id", "changed_at"])

    if "approval_workflows" not in existing_tables:
        op.create_table(
            "approval_workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("project_type_id", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_type_id"], ["project_types.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_workflows_project_type_id", "approval_workflows", ["project_type_id"])

    if "approval_steps" not in existing_tables:
        op.create_table(
            "approval_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("step_name", sa.String(length=255), nullable=False),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("can_skip", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "step_order", name="uq_approval_step_order"),
        )

    if "project_approvals" not in existing_tables:
        op.create_table(
            "project_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("current_step_id", sa.Integer(), nullable=True),
            sa.Column("overall_status", sa.String(length=30), nullable=False, server_default="pending"),
            _ts("started_at"),
            _ts("completed_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["workflow_id"], ["approval_workflows.id"]),
            sa.ForeignKeyConstraint(["current_step_id"], ["approval_steps.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_approvals_project_id", "project_approvals", ["project_id"])
        op.create_index("ix_project_approvals_overall_status", "project_approvals", ["overall_status"])

    if "approval_step_records" not in existing_tables:
        op.create_table(
            "approval_step_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_approval_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("conditions", sa.Text(), nullable=True),
            _ts("submitted_at"),
            _ts("reviewed_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_approval_id"], ["project_approvals.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["step_id"], ["approval_steps.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "project_approval_id", "step_id", name="uq_step_record_approval_step",
            ),
        )

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])


def downgrade():
    for table in (
        "audit_logs",
        "approval_step_records",
        "project_approvals",
        "approval_steps",
        "approval_workflows",
        "project_status_history",
        "project_stage_history",
        "projects",
        "users",
        "role_permissions",
        "permissions",
        "roles",
        "project_statuses",
        "project_stages",
        "sectors",
        "industries",
        "project_types",
    ):
        op.drop_table(table)
