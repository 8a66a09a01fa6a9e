"""
Forecast Ensemble Database Models

Tables owned or read by the ensemble rollout subsystem.
Multi-tenant via tenant_id on all tables.

Tables:
  Tenancy (read-only here):
  1. tenants                      - Customer accounts
  2. tenant_settings              - Per-tenant self-tuning opt-in

  Accuracy & Reliability:
  3. forecast_accuracy            - Predicted vs actual success rate, one row per evaluation
  4. forecast_model_metrics       - Reliability snapshots (latest row per tenant wins)

  Ensemble:
  5. ensemble_weight_history      - Append-only weight vector ledger

  Experiments:
  6. model_experiments            - Canary experiments (running → succeeded/rolled_back/failed)
  7. model_experiment_assignments - Canary group membership
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from db.session import Base

EXPERIMENT_STATUSES = ("running", "succeeded", "rolled_back", "failed")

# ─── 1. Tenants ────────────────────────────────────────────────────────────


class Tenant(Base):
    __tablename__ = "tenants"

    tenant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 2. Tenant Settings ────────────────────────────────────────────────────


class TenantSetting(Base):
    """
    Per-tenant opt-in flags. Owned by the settings screens.

    Having a row here is what makes a tenant part of the control population
    of an experiment; self_tuning_enabled controls rollout propagation.
    """

    __tablename__ = "tenant_settings"

    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), primary_key=True)
    self_tuning_enabled = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_tenant_settings_self_tuning", "self_tuning_enabled"),)


# ─── 3. Forecast Accuracy ──────────────────────────────────────────────────


class ForecastAccuracy(Base):
    __tablename__ = "forecast_accuracy"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    evaluation_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    predicted_sr = Column(Float, nullable=False)
    actual_sr = Column(Float, nullable=False)
    predicted_breach = Column(Boolean, nullable=False, default=False)
    actual_breach = Column(Boolean, nullable=False, default=False)
    days_ahead = Column(Integer, nullable=False, default=7)

    __table_args__ = (Index("ix_forecast_accuracy_tenant_date", "tenant_id", "evaluation_date"),)


# ─── 4. Forecast Model Metrics (Reliability Snapshots) ─────────────────────


class ForecastModelMetrics(Base):
    """
    Rolling reliability snapshot per tenant.

    reliability = 0.5 * precision + 0.3 * recall + 0.2 * max(0, 100 - mae), clamped to [0, 100]
    """

    __tablename__ = "forecast_model_metrics"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    precision_predicted = Column(Float, nullable=False, default=0.0)
    recall_breached = Column(Float, nullable=False, default=0.0)
    mae_sr = Column(Float, nullable=False, default=0.0)
    reliability = Column(Float, nullable=True)
    sample_size = Column(Integer, nullable=False, default=0)
    computed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_forecast_model_metrics_tenant_computed", "tenant_id", "computed_at"),)


# ─── 5. Ensemble Weight History ────────────────────────────────────────────


class EnsembleWeightHistory(Base):
    """
    Append-only ledger of ensemble blend weights.

    Never updated or deleted. The current vector for a tenant is the row with
    the newest adjusted_at.
    """

    __tablename__ = "ensemble_weight_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    weight_arima = Column(Float, nullable=False)
    weight_gradient = Column(Float, nullable=False)
    weight_bayes = Column(Float, nullable=False)
    reliability = Column(Float, nullable=True)
    mae = Column(Float, nullable=True)
    adjusted_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "weight_arima >= 0 AND weight_gradient >= 0 AND weight_bayes >= 0",
            name="ck_ensemble_weight_non_negative",
        ),
        Index("ix_ensemble_weight_history_tenant_adjusted", "tenant_id", "adjusted_at"),
    )


# ─── 6. Model Experiments ──────────────────────────────────────────────────


class ModelExperiment(Base):
    """
    Canary experiment for a candidate ensemble weight vector.

    Status flow:
      running → succeeded | rolled_back | failed

    Created as 'running' by the admin flow; moved to a terminal status
    exactly once by the rollout controller.
    """

    __tablename__ = "model_experiments"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    family = Column(String(50), nullable=False, default="ensemble")
    status = Column(String(20), nullable=False, default="running")
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in EXPERIMENT_STATUSES) + ")",
            name="ck_model_experiments_status",
        ),
        Index("ix_model_experiments_status_family", "status", "family"),
    )


# ─── 7. Model Experiment Assignments ───────────────────────────────────────


class ModelExperimentAssignment(Base):
    __tablename__ = "model_experiment_assignments"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    experiment_id = Column(GUID(), ForeignKey("model_experiments.id"), nullable=False)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    assigned_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("experiment_id", "tenant_id", name="uq_experiment_assignment"),
        Index("ix_model_experiment_assignments_experiment", "experiment_id"),
    )
