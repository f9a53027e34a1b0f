"""create_catalog_tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "stocks",
        sa.Column("symbol", sa.String(length=10), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("exchange", sa.String(length=50), nullable=True),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("industry", sa.String(length=100), nullable=True),
        sa.Column("current_price", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("previous_close", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("change_amount", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("change_percent", sa.Numeric(precision=10, scale=4), nullable=True),
        sa.Column("day_high", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("day_low", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("volume", sa.BigInteger(), nullable=True),
        sa.Column("average_volume", sa.BigInteger(), nullable=True),
        sa.Column("week_52_high", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("week_52_low", sa.Numeric(precision=12, scale=4), nullable=True),
        sa.Column("market_cap", sa.BigInteger(), nullable=True),
        sa.Column("shares_outstanding", sa.BigInteger(), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("symbol"),
    )
    op.create_index("ix_stocks_sector", "stocks", ["sector"])

    op.create_table(
        "positions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("symbol", sa.String(length=10), nullable=False),
        sa.Column("quantity", sa.Numeric(), nullable=False),
        sa.Column("entry_price", sa.Numeric(), nullable=False),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_price", sa.Numeric(), nullable=True),
        sa.Column("unrealized_pnl_pct", sa.Numeric(), nullable=True),
        sa.Column("days_held", sa.Integer(), nullable=True),
        sa.Column("entry_rsi", sa.Numeric(precision=6, scale=2), nullable=True),
        sa.Column("entry_reason", sa.Text(), nullable=True),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("industry", sa.String(length=100), nullable=True),
        sa.Column("position_size_pct", sa.Numeric(precision=6, scale=2), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("symbol", name="uq_positions_symbol"),
    )

    op.create_table(
        "signal_feedback",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("symbol", sa.String(length=10), nullable=False),
        sa.Column("signal", sa.String(length=10), nullable=False),
        sa.Column("action", sa.String(length=10), nullable=False),
        sa.Column("confidence", sa.Numeric(precision=5, scale=4), nullable=True),
        sa.Column("feedback_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_signal_feedback_symbol", "signal_feedback", ["symbol"])
    op.create_index("ix_signal_feedback_action", "signal_feedback", ["action"])
    op.create_index("ix_signal_feedback_feedback_timestamp", "signal_feedback", ["feedback_timestamp"])


def downgrade() -> None:
    op.drop_index("ix_signal_feedback_feedback_timestamp", table_name="signal_feedback")
    op.drop_index("ix_signal_feedback_action", table_name="signal_feedback")
    op.drop_index("ix_signal_feedback_symbol", table_name="signal_feedback")
    op.drop_table("signal_feedback")
    op.drop_table("positions")
    op.drop_index("ix_stocks_sector", table_name="stocks")
    op.drop_table("stocks")
