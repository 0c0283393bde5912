"""Create subscriptions, usage source tables and billing anomalies."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001_create_billing_tables"
down_revision = None
branch_labels = None
depends_on = None


USAGE_TABLES = ("appointments", "services", "employees", "bio_links", "testimonials")


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("plan_type", sa.String(), nullable=False, server_default=sa.text("'free'")),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("period_months", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "last_event_timestamp",
            sa.BigInteger(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("last_event_id", sa.String(), nullable=False, server_default=sa.text("''")),
        sa.Column("provider_transaction_id", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('active', 'cancelled', 'past_due')",
            name="ck_subscriptions_status",
        ),
        sa.CheckConstraint(
            "plan_type IN ('free', 'pro', 'premium')",
            name="ck_subscriptions_plan_type",
        ),
    )

    for table in USAGE_TABLES:
        op.create_table(
            table,
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(), nullable=False, server_default=sa.text("''")),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])

    op.create_index(
        "ix_appointments_user_id_created_at",
        "appointments",
        ["user_id", "created_at"],
    )

    op.create_table(
        "billing_anomalies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("expected_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_billing_anomalies_user_id", "billing_anomalies", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_billing_anomalies_user_id", table_name="billing_anomalies")
    op.drop_table("billing_anomalies")
    op.drop_index("ix_appointments_user_id_created_at", table_name="appointments")
    for table in reversed(USAGE_TABLES):
        op.drop_index(f"ix_{table}_user_id", table_name=table)
        op.drop_table(table)
    op.drop_table("subscriptions")
