"""Initial schema: organizations, roles, users, workflows, approval requests

Revision ID: 0001
Revises: None
Create Date: 2026-10-17

Tables added:
- organizations, roles, users: tenancy and identity directory
- approval_workflows, workflow_steps: workflow templates
- approval_requests, approval_steps: in-flight and finished approvals
- approval_history: transition timeline
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PENDING_ONLY = sa.text("status = 'pending'")


def upgrade() -> None:
    """Create all tables."""

    # --- organizations (no FK deps) ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_organizations"),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    # --- roles (FK -> organizations) ---
    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("org_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_roles_org_id"),
    )
    op.create_index("ix_roles_org_id", "roles", ["org_id"])

    # --- users (FK -> organizations, roles, users) ---
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("org_id", sa.Uuid(), nullable=False),
        sa.Column("role_id", sa.Uuid(), nullable=True),
        sa.Column("manager_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], name="fk_users_org_id"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_users_role_id"),
        sa.ForeignKeyConstraint(
            ["manager_id"], ["users.id"], name="fk_users_manager_id", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_org_id", "users", ["org_id"])

    # --- approval_workflows ---
    op.create_table(
        "approval_workflows",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("org_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_approval_workflows"),
        sa.ForeignKeyConstraint(
            ["org_id"], ["organizations.id"], name="fk_approval_workflows_org_id"
        ),
    )
    op.create_index(
        "ix_approval_workflows_lookup", "approval_workflows", ["org_id", "entity_type", "is_active"]
    )

    # --- workflow_steps ---
    op.create_table(
        "workflow_steps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workflow_id", sa.Uuid(), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("approver_spec", sa.JSON(), nullable=False),
        sa.Column("quorum", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_steps"),
        sa.ForeignKeyConstraint(
            ["workflow_id"], ["approval_workflows.id"],
            name="fk_workflow_steps_workflow_id", ondelete="CASCADE",
        ),
        sa.UniqueConstraint("workflow_id", "step_order", name="uq_workflow_steps_workflow_order"),
        sa.CheckConstraint("step_order >= 1", name="ck_workflow_steps_step_order_positive"),
        sa.CheckConstraint("quorum IS NULL OR quorum >= 1", name="ck_workflow_steps_quorum_positive"),
    )
    op.create_index("ix_workflow_steps_workflow_id", "workflow_steps", ["workflow_id"])

    # --- approval_requests ---
    op.create_table(
        "approval_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("org_id", sa.Uuid(), nullable=False),
        sa.Column("workflow_id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("entity_snapshot", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("current_step_order", sa.Integer(), nullable=True),
        sa.Column("required_approvals", sa.Integer(), nullable=True),
        sa.Column("requested_by", sa.Uuid(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_approval_requests"),
        sa.ForeignKeyConstraint(
            ["org_id"], ["organizations.id"], name="fk_approval_requests_org_id"
        ),
        sa.ForeignKeyConstraint(
            ["workflow_id"], ["approval_workflows.id"],
            name="fk_approval_requests_workflow_id",
        ),
    )
    op.create_index("ix_approval_requests_org_id", "approval_requests", ["org_id"])
    op.create_index("ix_approval_requests_workflow_id", "approval_requests", ["workflow_id"])
    op.create_index("ix_approval_requests_status", "approval_requests", ["status"])
    op.create_index("ix_approval_requests_requested_by", "approval_requests", ["requested_by"])
    op.create_index("ix_approval_requests_submitted_at", "approval_requests", ["submitted_at"])
    op.create_index("ix_approval_requests_entity", "approval_requests", ["entity_type", "entity_id"])
    op.create_index(
        "uq_approval_requests_pending_entity",
        "approval_requests",
        ["org_id", "entity_type", "entity_id"],
        unique=True,
        postgresql_where=PENDING_ONLY,
        sqlite_where=PENDING_ONLY,
    )

    # --- approval_steps ---
    op.create_table(
        "approval_steps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("action_at", sa.DateTime(), nullable=True),
        sa.Column("delegated_to", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_approval_steps"),
        sa.ForeignKeyConstraint(
            ["request_id"], ["approval_requests.id"],
            name="fk_approval_steps_request_id", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_approval_steps_request_id", "approval_steps", ["request_id"])
    op.create_index("ix_approval_steps_approver_id", "approval_steps", ["approver_id"])
    op.create_index("ix_approval_steps_delegated_to", "approval_steps", ["delegated_to"])
    op.create_index("ix_approval_steps_request_order", "approval_steps", ["request_id", "step_order"])
    op.create_index(
        "uq_approval_steps_pending_approver",
        "approval_steps",
        ["request_id", "approver_id"],
        unique=True,
        postgresql_where=PENDING_ONLY,
        sqlite_where=PENDING_ONLY,
    )

    # --- approval_history ---
    op.create_table(
        "approval_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("from_state", sa.String(20), nullable=False),
        sa.Column("to_state", sa.String(20), nullable=False),
        sa.Column("transition", sa.String(50), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("extra_data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_approval_history"),
        sa.ForeignKeyConstraint(
            ["request_id"], ["approval_requests.id"],
            name="fk_approval_history_request_id", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_approval_history_request_id", "approval_history", ["request_id"])
    op.create_index("ix_approval_history_created_at", "approval_history", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("approval_history")
    op.drop_index("uq_approval_steps_pending_approver", table_name="approval_steps")
    op.drop_table("approval_steps")
    op.drop_index("uq_approval_requests_pending_entity", table_name="approval_requests")
    op.drop_table("approval_requests")
    op.drop_table("workflow_steps")
    op.drop_table("approval_workflows")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_table("organizations")
