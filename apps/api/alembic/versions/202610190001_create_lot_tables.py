"""create lot allocation tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "workspace_member",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.String(length=128), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_workspace_member_workspace", "workspace_member", ["workspace_id"])

    op.create_table(
        "tree_lot",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.String(length=128), nullable=False),
        sa.Column("lot_code", sa.String(length=64), nullable=False),
        sa.Column("lot_name", sa.String(length=255), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("planted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("gps_center", sa.String(length=64), nullable=True),
        sa.Column("assigned_operator_id", sa.Uuid(), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "lot_code", name="uq_tree_lot_code"),
        sa.CheckConstraint("capacity > 0", name="ck_tree_lot_capacity_positive"),
        sa.CheckConstraint("planted_count >= 0", name="ck_tree_lot_planted_count_non_negative"),
    )
    op.create_index("ix_tree_lot_workspace", "tree_lot", ["workspace_id", "lot_name"])

    op.create_table(
        "tree",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.String(length=128), nullable=False),
        sa.Column("tree_code", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="PLANTED"),
        sa.Column("tree_lot_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tree_lot_id"], ["tree_lot.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "tree_code", name="uq_tree_code"),
        sa.CheckConstraint(
            "status IN ('PLANTED', 'GROWING', 'MATURE', 'HARVESTED')",
            name="ck_tree_status",
        ),
    )
    op.create_index("ix_tree_lot_membership", "tree", ["tree_lot_id"])


def downgrade() -> None:
    op.drop_index("ix_tree_lot_membership", table_name="tree")
    op.drop_table("tree")
    op.drop_index("ix_tree_lot_workspace", table_name="tree_lot")
    op.drop_table("tree_lot")
    op.drop_index("ix_workspace_member_workspace", table_name="workspace_member")
    op.drop_table("workspace_member")
