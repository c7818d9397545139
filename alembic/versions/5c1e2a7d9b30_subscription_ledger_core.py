"""subscription_ledger_core

Revision ID: 5c1e2a7d9b30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e2a7d9b30"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

AMOUNT = sa.Numeric(18, 8)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("username", sa.Text(), nullable=True),
        sa.Column("balance", AMOUNT, nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("idx_users_username", "users", ["username"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("plan_id", sa.String(64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("granted_role_id", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("original_price", AMOUNT, nullable=False),
        sa.Column("paid_price", AMOUNT, nullable=False),
        sa.Column("total_paid", AMOUNT, nullable=False),
        sa.Column("discount_applied", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_renewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_renewal_plan_id", sa.String(64), nullable=True),
        sa.Column("last_renewal_amount", AMOUNT, nullable=True),
        sa.Column("warning_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("warning_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('active','expired')", name="ck_subscriptions_status"),
        sa.CheckConstraint("duration_days > 0", name="ck_subscriptions_duration_positive"),
        sa.CheckConstraint(
            "renewal_count >= 0",
            name="ck_subscriptions_renewal_count_non_negative",
        ),
        sa.CheckConstraint("total_paid >= 0", name="ck_subscriptions_total_paid_non_negative"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_subscriptions_user_id_users",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_subscriptions"),
    )
    op.create_index("idx_subscriptions_user", "subscriptions", ["user_id"])
    op.create_index("idx_subscriptions_expires", "subscriptions", ["expires_at"])
    op.create_index("idx_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=False),
        sa.Column("plan_id", sa.String(64), nullable=False),
        sa.Column("plan_title", sa.Text(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("final_price", AMOUNT, nullable=False),
        sa.Column("discount_amount", AMOUNT, nullable=False),
        sa.Column("balance_before", AMOUNT, nullable=False),
        sa.Column("balance_after", AMOUNT, nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("type IN ('purchase','renewal')", name="ck_transactions_type"),
        sa.CheckConstraint("final_price >= 0", name="ck_transactions_final_price_non_negative"),
        sa.CheckConstraint("discount_amount >= 0", name="ck_transactions_discount_non_negative"),
        sa.CheckConstraint(
            "balance_after >= 0",
            name="ck_transactions_balance_after_non_negative",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_transactions_user_id_users",
        ),
        sa.ForeignKeyConstraint(
            ["subscription_id"],
            ["subscriptions.id"],
            name="fk_transactions_subscription_id_subscriptions",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_transactions"),
        sa.UniqueConstraint("idempotency_key", name="uq_transactions_idempotency_key"),
    )
    op.create_index("idx_transactions_user", "transactions", ["user_id"])
    op.create_index("idx_transactions_created", "transactions", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_transactions_created", table_name="transactions")
    op.drop_index("idx_transactions_user", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("idx_subscriptions_status", table_name="subscriptions")
    op.drop_index("idx_subscriptions_expires", table_name="subscriptions")
    op.drop_index("idx_subscriptions_user", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("idx_users_username", table_name="users")
    op.drop_table("users")
