"""Initial schema: people, projects, task chat and material requests.

Revision ID: 0001_initial
Revises:
Create Date: 2026-03-02
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "people",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True, unique=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("code", sa.String(length=40), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by_person_id", sa.Integer(), sa.ForeignKey("people.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "project_tasks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by_person_id", sa.Integer(), sa.ForeignKey("people.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "project_task_assignees",
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("project_tasks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "person_id",
            sa.Integer(),
            sa.ForeignKey("people.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "task_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("project_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_person_id", sa.Integer(), sa.ForeignKey("people.id"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("mentions", sa.JSON(), nullable=True),
        sa.Column("read_by", sa.JSON(), nullable=True),
        sa.Column("client_key", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_task_messages_task_id_created_at", "task_messages", ["task_id", "created_at"])
    op.create_index("ix_task_messages_client_key", "task_messages", ["client_key"])

    material_request_status = sa.Enum(
        "pending",
        "approved",
        "rejected",
        "issued",
        "purchased",
        name="material_request_status",
    )

    op.create_table(
        "material_requests",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("project_tasks.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=True),
        sa.Column("requested_by", sa.Integer(), sa.ForeignKey("people.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False, server_default="Material Request"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("urgency", sa.String(length=20), nullable=True, server_default="medium"),
        sa.Column("expected_delivery_date", sa.Date(), nullable=True),
        sa.Column("status", material_request_status, nullable=True, server_default="pending"),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("people.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_estimated_cost", sa.Float(), nullable=True, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_material_requests_task_id", "material_requests", ["task_id"])
    op.create_index("ix_material_requests_project_id", "material_requests", ["project_id"])

    op.create_table(
        "material_request_items",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "material_request_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("material_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_name", sa.String(length=200), nullable=True),
        sa.Column("quantity_requested", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(length=40), nullable=True),
        sa.Column("specifications", sa.Text(), nullable=True),
        sa.Column("brand", sa.String(length=120), nullable=True),
        sa.Column("model", sa.String(length=120), nullable=True),
        sa.Column("quality_grade", sa.String(length=60), nullable=True),
        sa.Column("estimated_unit_cost", sa.Float(), nullable=True),
        sa.Column("supplier", sa.String(length=200), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=True, server_default="pending"),
        sa.Column("quantity_approved", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_material_request_items_material_request_id",
        "material_request_items",
        ["material_request_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_material_request_items_material_request_id", table_name="material_request_items")
    op.drop_table("material_request_items")
    op.drop_index("ix_material_requests_project_id", table_name="material_requests")
    op.drop_index("ix_material_requests_task_id", table_name="material_requests")
    op.drop_table("material_requests")
    sa.Enum(name="material_request_status").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_task_messages_client_key", table_name="task_messages")
    op.drop_index("ix_task_messages_task_id_created_at", table_name="task_messages")
    op.drop_table("task_messages")
    op.drop_table("project_task_assignees")
    op.drop_table("project_tasks")
    op.drop_table("projects")
    op.drop_table("people")
