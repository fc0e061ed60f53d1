"""order lifecycle schema

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _column_exists(inspector: sa.Inspector, table_name: str, column_name: str) -> bool:
    return any(column["name"] == column_name for column in inspector.get_columns(table_name))


def _ensure_users(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=64), nullable=True),
            sa.Column("pickup_address", sa.JSON(), nullable=True),
            sa.Column("subaccount_code", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_users_id", "users", ["id"], unique=False)
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        return

    # Profiles shared with the platform database may predate the marketplace columns.
    for column in (
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("pickup_address", sa.JSON(), nullable=True),
        sa.Column("subaccount_code", sa.String(length=64), nullable=True),
    ):
        if not _column_exists(inspector, "users", column.name):
            op.add_column("users", column)


def _ensure_books(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "books"):
        return
    op.create_table(
        "books",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("weight_kg", sa.Numeric(6, 2), nullable=False, server_default=sa.text("0.5")),
        sa.Column("sold", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reserved_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reserved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_books_id", "books", ["id"], unique=False)
    op.create_index("ix_books_seller_id", "books", ["seller_id"], unique=False)


def _ensure_orders(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "orders"):
        return
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("buyer_email", sa.String(length=255), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_commit"),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_reference", sa.String(length=128), nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("committed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("courier_provider", sa.String(length=50), nullable=True),
        sa.Column("courier_tracking_number", sa.String(length=128), nullable=True),
        sa.Column("courier_pickup_date", sa.String(length=32), nullable=True),
        sa.Column("courier_pickup_window", sa.String(length=64), nullable=True),
        sa.Column("shipping_label_url", sa.String(length=1024), nullable=True),
        sa.Column("collected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("collected_by", sa.String(length=100), nullable=True),
        sa.Column("collection_notes", sa.Text(), nullable=True),
        sa.Column("tracking_reference", sa.String(length=128), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decline_reason", sa.Text(), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("payment_reference", "seller_id", name="uq_orders_payment_reference_seller"),
    )
    op.create_index("ix_orders_id", "orders", ["id"], unique=False)
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"], unique=False)
    op.create_index("ix_orders_seller_id", "orders", ["seller_id"], unique=False)
    op.create_index("ix_orders_status", "orders", ["status"], unique=False)
    op.create_index("ix_orders_payment_reference", "orders", ["payment_reference"], unique=False)
    op.create_index("ix_orders_expires_at", "orders", ["expires_at"], unique=False)


def _ensure_payments_and_refunds(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "payment_transactions"):
        op.create_table(
            "payment_transactions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("reference", sa.String(length=128), nullable=False),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("buyer_email", sa.String(length=255), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("delivery_fee", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("items", sa.JSON(), nullable=True),
            sa.Column("shipping_address", sa.JSON(), nullable=True),
            sa.Column("authorization_url", sa.String(length=1024), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_payment_transactions_id", "payment_transactions", ["id"], unique=False)
        op.create_index("ix_payment_transactions_reference", "payment_transactions", ["reference"], unique=True)

    if not _table_exists(inspector, "refunds"):
        op.create_table(
            "refunds",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("payment_reference", sa.String(length=128), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("reason", sa.String(length=32), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("gateway_reference", sa.String(length=128), nullable=True),
            sa.Column("failure_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("order_id", name="uq_refunds_order_id"),
        )
        op.create_index("ix_refunds_id", "refunds", ["id"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    _ensure_users(sa.inspect(bind))
    _ensure_books(sa.inspect(bind))
    _ensure_orders(sa.inspect(bind))
    _ensure_payments_and_refunds(sa.inspect(bind))


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    for table_name in ("refunds", "payment_transactions", "orders", "books"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
