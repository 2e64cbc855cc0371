"""Initial schema: billing core tables.

Represents the current schema of all models in src/models/.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-11-12 13:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    # Plots (registry-owned, read-only for billing)
    op.create_table(
        "plots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(length=50), nullable=False),
        sa.Column("area", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "ARCHIVED", name="plotstatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_plot_status", "plots", ["status"])

    op.create_table(
        "tariffs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.Enum("MEMBER", "TARGET", "ELECTRIC", name="tarifftype"), nullable=False),
        sa.Column("unit", sa.Enum("PLOT", "AREA", name="tariffunit"), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("active_from", sa.Date(), nullable=False),
        sa.Column("active_to", sa.Date(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("DRAFT", "ACTIVE", "ARCHIVED", name="tariffstatus"),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tariff_type_from", "tariffs", ["type", "active_from"])

    op.create_table(
        "tariff_overrides",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tariff_id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("comment", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tariff_id"], ["tariffs.id"]),
        sa.ForeignKeyConstraint(["plot_id"], ["plots.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tariff_id", "plot_id", name="uq_tariff_override_tariff_plot"),
    )
    op.create_index("ix_tariff_overrides_tariff_id", "tariff_overrides", ["tariff_id"])
    op.create_index("ix_tariff_overrides_plot_id", "tariff_overrides", ["plot_id"])

    op.create_table(
        "billing_periods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("date_from", sa.Date(), nullable=False),
        sa.Column("date_to", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("DRAFT", "LOCKED", name="periodstatus"),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("generation_note", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "period_accruals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("MEMBERSHIP", "TARGET", "ELECTRIC", name="accrualtype"), nullable=False
        ),
        sa.Column("amount_accrued", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("override_applied", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("tariff_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["period_id"], ["billing_periods.id"]),
        sa.ForeignKeyConstraint(["plot_id"], ["plots.id"]),
        sa.ForeignKeyConstraint(["tariff_id"], ["tariffs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("period_id", "plot_id", "type", name="uq_period_accrual_key"),
    )
    op.create_index("ix_period_accruals_period_id", "period_accruals", ["period_id"])
    op.create_index("ix_period_accruals_plot_id", "period_accruals", ["plot_id"])
    op.create_index("idx_accrual_plot_type", "period_accruals", ["plot_id", "type"])

    op.create_table(
        "accrual_periods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("year", "month", "category", name="uq_accrual_period_key"),
    )

    op.create_table(
        "import_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("imported_by_user_id", sa.Integer(), nullable=True),
        sa.Column("comment", sa.String(length=500), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skip_reasons", sa.JSON(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("COMPLETED", "ROLLED_BACK", name="importbatchstatus"),
            nullable=False,
            server_default="COMPLETED",
        ),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=True, comment="Matched plot (null until matched)"),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("paid_at", sa.Date(), nullable=False),
        sa.Column(
            "method",
            sa.Enum("BANK", "CASH", "CARD", "OTHER", name="paymentmethod"),
            nullable=False,
            server_default="BANK",
        ),
        sa.Column(
            "reference",
            sa.String(length=255),
            nullable=True,
            comment="Bank reference used as the deduplication key",
        ),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("payer", sa.String(length=255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column(
            "credit_amount",
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default="0",
            comment="Part of the amount not allocated to any accrual",
        ),
        sa.Column("import_batch_id", sa.Integer(), nullable=True),
        sa.Column("accrual_period_id", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("is_voided", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("void_reason", sa.String(length=500), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["plot_id"], ["plots.id"]),
        sa.ForeignKeyConstraint(["import_batch_id"], ["import_batches.id"]),
        sa.ForeignKeyConstraint(["accrual_period_id"], ["accrual_periods.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_plot_id", "payments", ["plot_id"])
    op.create_index("ix_payments_paid_at", "payments", ["paid_at"])
    op.create_index("ix_payments_import_batch_id", "payments", ["import_batch_id"])
    op.create_index("ix_payments_accrual_period_id", "payments", ["accrual_period_id"])
    op.create_index("idx_payment_plot_day", "payments", ["plot_id", "paid_at"])
    # Reference is unique among non-voided payments only
    op.create_index(
        "uq_payment_reference_active",
        "payments",
        ["reference"],
        unique=True,
        sqlite_where=sa.text("is_voided = 0 AND reference IS NOT NULL"),
        postgresql_where=sa.text("is_voided = false AND reference IS NOT NULL"),
    )

    op.create_table(
        "payment_allocations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("accrual_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["accrual_id"], ["period_accruals.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_allocations_payment_id", "payment_allocations", ["payment_id"])
    op.create_index("ix_payment_allocations_accrual_id", "payment_allocations", ["accrual_id"])

    op.create_table(
        "debt_repayment_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "AGREED", "IN_PROGRESS", "COMPLETED", "CANCELLED", name="planstatus"
            ),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("comment", sa.String(length=1000), nullable=True),
        sa.Column("agreed_amount", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("agreed_date", sa.Date(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["plot_id"], ["plots.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["billing_periods.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plot_id", "period_id", name="uq_repayment_plan_plot_period"),
    )
    op.create_index("ix_debt_repayment_plans_plot_id", "debt_repayment_plans", ["plot_id"])
    op.create_index("ix_debt_repayment_plans_period_id", "debt_repayment_plans", ["period_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    for table in (
        "audit_logs",
        "debt_repayment_plans",
        "payment_allocations",
        "payments",
        "import_batches",
        "accrual_periods",
        "period_accruals",
        "billing_periods",
        "tariff_overrides",
        "tariffs",
        "plots",
    ):
        op.drop_table(table)
