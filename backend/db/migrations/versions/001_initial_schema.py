"""
Initial schema: tenants, accuracy, reliability snapshots, weight ledger, experiments.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "tenant_settings",
        sa.Column(
            "tenant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("tenants.tenant_id"),
            primary_key=True,
        ),
        sa.Column("self_tuning_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tenant_settings_self_tuning", "tenant_settings", ["self_tuning_enabled"])

    op.create_table(
        "forecast_accuracy",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("evaluation_date", sa.DateTime(), nullable=False),
        sa.Column("predicted_sr", sa.Float(), nullable=False),
        sa.Column("actual_sr", sa.Float(), nullable=False),
        sa.Column("predicted_breach", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actual_breach", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("days_ahead", sa.Integer(), nullable=False, server_default="7"),
    )
    op.create_index("ix_forecast_accuracy_tenant_date", "forecast_accuracy", ["tenant_id", "evaluation_date"])

    op.create_table(
        "forecast_model_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("precision_predicted", sa.Float(), nullable=False, server_default="0"),
        sa.Column("recall_breached", sa.Float(), nullable=False, server_default="0"),
        sa.Column("mae_sr", sa.Float(), nullable=False, server_default="0"),
        sa.Column("reliability", sa.Float(), nullable=True),
        sa.Column("sample_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_forecast_model_metrics_tenant_computed",
        "forecast_model_metrics",
        ["tenant_id", "computed_at"],
    )

    op.create_table(
        "ensemble_weight_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("weight_arima", sa.Float(), nullable=False),
        sa.Column("weight_gradient", sa.Float(), nullable=False),
        sa.Column("weight_bayes", sa.Float(), nullable=False),
        sa.Column("reliability", sa.Float(), nullable=True),
        sa.Column("mae", sa.Float(), nullable=True),
        sa.Column("adjusted_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "weight_arima >= 0 AND weight_gradient >= 0 AND weight_bayes >= 0",
            name="ck_ensemble_weight_non_negative",
        ),
    )
    op.create_index(
        "ix_ensemble_weight_history_tenant_adjusted",
        "ensemble_weight_history",
        ["tenant_id", "adjusted_at"],
    )

    op.create_table(
        "model_experiments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("family", sa.String(length=50), nullable=False, server_default="ensemble"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('running', 'succeeded', 'rolled_back', 'failed')",
            name="ck_model_experiments_status",
        ),
    )
    op.create_index("ix_model_experiments_status_family", "model_experiments", ["status", "family"])

    op.create_table(
        "model_experiment_assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "experiment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("model_experiments.id"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("experiment_id", "tenant_id", name="uq_experiment_assignment"),
    )
    op.create_index(
        "ix_model_experiment_assignments_experiment",
        "model_experiment_assignments",
        ["experiment_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_model_experiment_assignments_experiment", table_name="model_experiment_assignments")
    op.drop_table("model_experiment_assignments")
    op.drop_index("ix_model_experiments_status_family", table_name="model_experiments")
    op.drop_table("model_experiments")
    op.drop_index("ix_ensemble_weight_history_tenant_adjusted", table_name="ensemble_weight_history")
    op.drop_table("ensemble_weight_history")
    op.drop_index("ix_forecast_model_metrics_tenant_computed", table_name="forecast_model_metrics")
    op.drop_table("forecast_model_metrics")
    op.drop_index("ix_forecast_accuracy_tenant_date", table_name="forecast_accuracy")
    op.drop_table("forecast_accuracy")
    op.drop_index("ix_tenant_settings_self_tuning", table_name="tenant_settings")
    op.drop_table("tenant_settings")
    op.drop_table("tenants")
