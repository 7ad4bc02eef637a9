"""Initial migration

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 10:00:00
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUSES = ("Accepted", "Completed", "OnBackorder", "Declined", "Returned", "Cancelled")
ADJUSTMENT_KINDS = ("payout", "payment", "set")


def upgrade():
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column(
            "balance", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")
        ),
    )
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("order_number", sa.String()),
        sa.Column("title", sa.Text()),
        sa.Column("note", sa.Text()),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("sale", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("cost", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("prosail", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "prosail_paid", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("prepay", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "return_delivery", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "supplier_id",
            sa.Integer(),
            sa.ForeignKey("suppliers.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("promo_pay", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "our_logistics", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "shipped_by_supplier", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("is_return", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="order_status"),
            nullable=False,
            server_default="Accepted",
        ),
        sa.Column("traffic_source", sa.String()),
        sa.Column("cancel_reason", sa.Text()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("profit", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "supplier_balance_delta",
            sa.Numeric(12, 2),
            nullable=False,
            server_default=sa.text("0"),
        ),
    )
    op.create_table(
        "supplier_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column(
            "supplier_id",
            sa.Integer(),
            sa.ForeignKey("suppliers.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("delta", sa.Numeric(12, 2), nullable=False),
        sa.Column("kind", sa.Enum(*ADJUSTMENT_KINDS, name="adjustment_kind"), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
    )
    op.create_table(
        "manual_months",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("month", sa.String(7), nullable=False, unique=True),
        sa.Column("revenue", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("profit", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("orders", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )


def downgrade():
    op.drop_table("manual_months")
    op.drop_table("supplier_adjustments")
    op.drop_table("orders")
    op.drop_table("suppliers")
    # Drop enum types for Postgres
    op.execute("DROP TYPE IF EXISTS adjustment_kind;")
    op.execute("DROP TYPE IF EXISTS order_status;")
