"""users renewal marker

Revision ID: 0002_users_renewal_marker
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_users_renewal_marker"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def _column_names(table: str) -> set[str]:
    from sqlalchemy import inspect as sa_inspect
    inspector = sa_inspect(op.get_bind())
    try:
        return {col["name"] for col in inspector.get_columns(table)}
    except Exception:
        return set()


def upgrade() -> None:
    existing_cols = _column_names("users")
    if "last_credit_renewal_at" not in existing_cols:
        op.add_column("users", sa.Column("last_credit_renewal_at", sa.DateTime(timezone=True), nullable=True))
        # Existing subscribers count as renewed at their start date.
        op.execute(
            sa.text(
                "UPDATE users SET last_credit_renewal_at = subscription_started_at "
                "WHERE last_credit_renewal_at IS NULL AND subscription_started_at IS NOT NULL"
            )
        )


def downgrade() -> None:
    existing_cols = _column_names("users")
    if "last_credit_renewal_at" in existing_cols:
        op.drop_column("users", "last_credit_renewal_at")
