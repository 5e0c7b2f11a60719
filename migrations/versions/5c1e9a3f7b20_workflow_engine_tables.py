"""workflow_engine_tables

Create organizations, workflow stages/sub-stages, orders, items and the
item_history ledger.

Revision ID: 5c1e9a3f7b20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5c1e9a3f7b20"
down_revision = None
branch_labels = None
depends_on = None


def _org_fk():
    return sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("settings", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "workflow_stages" not in existing_tables:
        op.create_table(
            "workflow_stages",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _org_fk(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "sequence_order", name="uq_stage_org_sequence"),
        )
        op.create_index("ix_workflow_stages_organization_id", "workflow_stages", ["organization_id"])

    if "workflow_sub_stages" not in existing_tables:
        op.create_table(
            "workflow_sub_stages",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("stage_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _org_fk(),
            sa.ForeignKeyConstraint(["stage_id"], ["workflow_stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("stage_id", "sequence_order", name="uq_sub_stage_stage_sequence"),
        )
        op.create_index("ix_workflow_sub_stages_organization_id", "workflow_sub_stages", ["organization_id"])
        op.create_index("ix_workflow_sub_stages_stage_id", "workflow_sub_stages", ["stage_id"])

    if "orders" not in existing_tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("order_number", sa.String(length=50), nullable=False),
            sa.Column("customer_name", sa.String(length=200), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _org_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_orders_organization_id", "orders", ["organization_id"])

    if "items" not in existing_tables:
        op.create_table(
            "items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("current_stage_id", sa.String(length=36), nullable=False),
            sa.Column("current_sub_stage_id", sa.String(length=36), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            _org_fk(),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["current_stage_id"], ["workflow_stages.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["current_sub_stage_id"], ["workflow_sub_stages.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_items_organization_id", "items", ["organization_id"])
        op.create_index("ix_items_order_id", "items", ["order_id"])
        op.create_index(
            "idx_items_org_position", "items",
            ["organization_id", "current_stage_id", "current_sub_stage_id"],
        )

    if "item_history" not in existing_tables:
        op.create_table(
            "item_history",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("stage_id", sa.String(length=36), nullable=True),
            sa.Column("sub_stage_id", sa.String(length=36), nullable=True),
            sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rework_reason", sa.Text(), nullable=True),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            _org_fk(),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["workflow_stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["sub_stage_id"], ["workflow_sub_stages.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_item_history_organization_id", "item_history", ["organization_id"])
        op.create_index("ix_item_history_item_id", "item_history", ["item_id"])
        op.create_index("idx_item_history_item_entered", "item_history", ["item_id", "entered_at"])
        op.create_index("idx_item_history_org_open", "item_history", ["organization_id", "exited_at"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in ("item_history", "items", "orders", "workflow_sub_stages", "workflow_stages", "organizations"):
        if table in existing_tables:
            op.drop_table(table)
