"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("plan", sa.String(), nullable=True),
            sa.Column("billing_cycle", sa.String(), nullable=True),
            sa.Column("subscription_status", sa.String(), nullable=True),
            sa.Column("subscription_started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("credits_limit", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("credits_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("users")
    if "ix_users_id" not in idxs:
        op.create_index("ix_users_id", "users", ["id"])
    if "ix_users_email" not in idxs:
        op.create_index("ix_users_email", "users", ["email"])
    if "ix_users_plan" not in idxs:
        op.create_index("ix_users_plan", "users", ["plan"])
    if "ix_users_billing_cycle" not in idxs:
        op.create_index("ix_users_billing_cycle", "users", ["billing_cycle"])
    if "ix_users_subscription_status" not in idxs:
        op.create_index("ix_users_subscription_status", "users", ["subscription_status"])

    if "credit_transactions" not in existing_tables:
        op.create_table(
            "credit_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("reference_id", sa.String(), nullable=True),
            sa.Column("balance_after", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
        )
    idxs = existing_indexes("credit_transactions")
    if "ix_credit_transactions_id" not in idxs:
        op.create_index("ix_credit_transactions_id", "credit_transactions", ["id"])
    if "ix_credit_transactions_user_id" not in idxs:
        op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])
    if "ix_credit_transactions_type" not in idxs:
        op.create_index("ix_credit_transactions_type", "credit_transactions", ["type"])
    if "ix_credit_transactions_source" not in idxs:
        op.create_index("ix_credit_transactions_source", "credit_transactions", ["source"])
    if "ix_credit_transactions_reference_id" not in idxs:
        op.create_index("ix_credit_transactions_reference_id", "credit_transactions", ["reference_id"])
    if "ix_credit_transactions_created_at" not in idxs:
        op.create_index("ix_credit_transactions_created_at", "credit_transactions", ["created_at"])


def downgrade() -> None:
    op.drop_table("credit_transactions")
    op.drop_table("users")
