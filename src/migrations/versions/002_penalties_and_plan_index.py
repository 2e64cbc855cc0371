"""Penalty accruals and one cross-period repayment plan per plot.

Revision ID: 002_penalties_and_plan_index
Revises: 001_initial_schema
Create Date: 2025-12-03 10:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "002_penalties_and_plan_index"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "penalty_accruals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "FROZEN", "VOIDED", name="penaltystatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column("as_of", sa.Date(), nullable=False),
        sa.Column("annual_rate", sa.Numeric(precision=8, scale=4), nullable=False),
        sa.Column("base_debt", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("days_overdue", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("policy_version", sa.String(length=20), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("void_reason", sa.String(length=500), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("freeze_reason", sa.String(length=500), nullable=True),
        sa.Column("frozen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("frozen_by_user_id", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.ForeignKeyConstraint(["plot_id"], ["plots.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["billing_periods.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_penalty_accruals_plot_id", "penalty_accruals", ["plot_id"])
    op.create_index("ix_penalty_accruals_period_id", "penalty_accruals", ["period_id"])
    # One non-voided penalty per (plot, period)
    op.create_index(
        "uq_penalty_plot_period_active",
        "penalty_accruals",
        ["plot_id", "period_id"],
        unique=True,
        sqlite_where=sa.text("status != 'VOIDED'"),
        postgresql_where=sa.text("status != 'VOIDED'"),
    )

    # The (plot_id, period_id) constraint treats NULL periods as distinct
    op.create_index(
        "uq_repayment_plan_plot_all_periods",
        "debt_repayment_plans",
        ["plot_id"],
        unique=True,
        sqlite_where=sa.text("period_id IS NULL"),
        postgresql_where=sa.text("period_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_repayment_plan_plot_all_periods", table_name="debt_repayment_plans")
    op.drop_table("penalty_accruals")
