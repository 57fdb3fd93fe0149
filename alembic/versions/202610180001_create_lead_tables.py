"""create lead tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.String(length=32), nullable=False),
        sa.Column("customer_name", sa.Text(), nullable=False),
        sa.Column("customer_email", sa.Text(), nullable=True),
        sa.Column("customer_phone", sa.Text(), nullable=False),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="leads"),
        sa.Column("assigned_to", sa.String(length=64), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("payment_type", sa.String(length=32), nullable=True),
        sa.Column("delivery_method", sa.String(length=32), nullable=True),
        sa.Column("tracking_number", sa.Text(), nullable=True),
        sa.Column("tracking_status", sa.String(length=32), nullable=True),
        sa.Column("tracking_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("packing_date", sa.Date(), nullable=True),
        sa.Column("last_status_change", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", name="uq_lead_order_id"),
    )
    op.create_index("ix_lead_status", "lead", ["status"], unique=False)
    op.create_index("ix_lead_created_at", "lead", ["created_at"], unique=False)
    op.create_index("ix_lead_assigned_to", "lead", ["assigned_to"], unique=False)

    op.create_table(
        "lead_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_type", sa.String(length=16), nullable=False),
        sa.Column("size", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price_aed", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_item_lead_id", "lead_item", ["lead_id"], unique=False)

    op.create_table(
        "lead_status_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("old_status", sa.String(length=32), nullable=True),
        sa.Column("new_status", sa.String(length=32), nullable=False),
        sa.Column("changed_by", sa.String(length=64), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_lead_status_history_lead_id",
        "lead_status_history",
        ["lead_id", "changed_at"],
        unique=False,
    )

    op.create_table(
        "deleted_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("lead_data", sa.JSON(), nullable=False),
        sa.Column("lead_items", sa.JSON(), nullable=False),
        sa.Column("deleted_by", sa.String(length=64), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("restore_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deleted_lead_deleted_by", "deleted_lead", ["deleted_by"], unique=False)
    op.create_index("ix_deleted_lead_restore_deadline", "deleted_lead", ["restore_deadline"], unique=False)

    op.create_table(
        "user_preference",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("preferences", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_user_preference_user_id"),
    )


def downgrade() -> None:
    op.drop_table("user_preference")
    op.drop_index("ix_deleted_lead_restore_deadline", table_name="deleted_lead")
    op.drop_index("ix_deleted_lead_deleted_by", table_name="deleted_lead")
    op.drop_table("deleted_lead")
    op.drop_index("ix_lead_status_history_lead_id", table_name="lead_status_history")
    op.drop_table("lead_status_history")
    op.drop_index("ix_lead_item_lead_id", table_name="lead_item")
    op.drop_table("lead_item")
    op.drop_index("ix_lead_assigned_to", table_name="lead")
    op.drop_index("ix_lead_created_at", table_name="lead")
    op.drop_index("ix_lead_status", table_name="lead")
    op.drop_table("lead")
