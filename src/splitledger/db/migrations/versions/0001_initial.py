"""initial schema

Revision ID: 0001
Revises: 
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(20, 6)


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("group_type", sa.Text(), nullable=False, server_default="general"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("group_type in ('trip','meal','event','general')", name="groups_group_type_check"),
    )

    op.create_table(
        "group_members",
        sa.Column("group_id", sa.Text(), sa.ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text()),
        sa.Column("dietary", sa.Text(), nullable=False, server_default="both"),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("dietary in ('vegetarian','non-vegetarian','both')", name="group_members_dietary_check"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("group_id", sa.Text(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payer_id", sa.Text(), nullable=False),
        sa.Column("split_type", sa.Text(), nullable=False, server_default="EQUAL"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="expenses_amount_check"),
        sa.CheckConstraint(
            "split_type in ('EQUAL','PERCENTAGE','EXACT','ITEM_WISE')",
            name="expenses_split_type_check",
        ),
        sa.ForeignKeyConstraint(["group_id", "payer_id"], ["group_members.group_id", "group_members.id"]),
    )

    op.create_table(
        "expense_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("expense_id", sa.Text(), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("category", sa.Text(), nullable=False, server_default="other"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("category in ('vegetarian','non-vegetarian','other')", name="expense_items_category_check"),
    )

    op.create_table(
        "expense_item_assignees",
        sa.Column("item_id", sa.BigInteger(), sa.ForeignKey("expense_items.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("member_id", sa.Text(), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("expense_id", sa.Text(), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("member_id", sa.Text(), nullable=False),
        sa.Column("member_name", sa.Text(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("percentage", sa.Numeric(7, 2)),
        sa.Column("settled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("settled_at", sa.DateTime(timezone=True)),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("amount >= 0", name="expense_splits_amount_check"),
        sa.UniqueConstraint("expense_id", "member_id", name="expense_splits_member_key"),
    )

    op.create_index("idx_group_members_group", "group_members", ["group_id"])
    op.create_index("idx_expenses_group", "expenses", ["group_id"])
    op.create_index("idx_expense_splits_expense", "expense_splits", ["expense_id"])


def downgrade() -> None:
    op.drop_index("idx_expense_splits_expense", table_name="expense_splits")
    op.drop_index("idx_expenses_group", table_name="expenses")
    op.drop_index("idx_group_members_group", table_name="group_members")

    op.drop_table("expense_splits")
    op.drop_table("expense_item_assignees")
    op.drop_table("expense_items")
    op.drop_table("expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
