"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "is_credit_card", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "initial_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("initial_balance_date", sa.Date()),
        sa.Column("closing_day", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "closing_day IS NULL OR (closing_day >= 1 AND closing_day <= 30)",
            name="ck_account_closing_day_range",
        ),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind", sa.Enum("income", "expense", name="entrykind"), nullable=False
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("date", sa.Date()),
        sa.Column("created_by", sa.String(length=100)),
        sa.Column(
            "kind", sa.Enum("income", "expense", name="entrykind"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category_id", sa.String(length=36)),
        sa.Column("account_id", sa.String(length=36)),
        sa.Column("paid_card_id", sa.String(length=36)),
        sa.Column("destination_account_id", sa.String(length=36)),
        sa.Column("bill_items", sa.JSON()),
        sa.Column(
            "installment_number", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column(
            "total_installments", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("installment_group_id", sa.String(length=36)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "installment_number >= 1 AND total_installments >= 1",
            name="ck_entries_installments_positive",
        ),
    )
    op.create_index("ix_entries_date", "entries", ["date"])
    op.create_index("ix_entries_account_date", "entries", ["account_id", "date"])
    op.create_index("ix_entries_category_date", "entries", ["category_id", "date"])
    op.create_index(
        "ix_entries_installment_group", "entries", ["installment_group_id"]
    )


def downgrade():
    op.drop_index("ix_entries_installment_group", table_name="entries")
    op.drop_index("ix_entries_category_date", table_name="entries")
    op.drop_index("ix_entries_account_date", table_name="entries")
    op.drop_index("ix_entries_date", table_name="entries")
    op.drop_table("entries")
    op.drop_table("categories")
    op.drop_table("accounts")
