"""
Test Configuration: Fixtures for async DB, test client, and seed data.

Each test gets its own file-backed SQLite database so the rollout controller
can open several independent sessions against the same data.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_db, get_session_factory
from api.main import app
from db.session import Base

NOW = datetime(2026, 3, 10, 12, 0, 0)

CANARY_A = uuid.UUID("00000000-0000-0000-0000-000000000101")
CANARY_B = uuid.UUID("00000000-0000-0000-0000-000000000102")
CONTROL_A = uuid.UUID("00000000-0000-0000-0000-000000000201")
CONTROL_B = uuid.UUID("00000000-0000-0000-0000-000000000202")
OPTED_OUT = uuid.UUID("00000000-0000-0000-0000-000000000301")
NO_SETTINGS = uuid.UUID("00000000-0000-0000-0000-000000000401")


@pytest.fixture
async def test_engine(tmp_path):
    """Create a test database engine and build all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_session_factory():
        return session_factory

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = override_get_session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


class Seeder:
    """Small helpers for building tenants, metrics, weights and experiments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def tenant(self, tenant_id: uuid.UUID, self_tuning: bool | None = True) -> None:
        """Create a tenant; self_tuning=None means no settings row at all."""
        from db.models import Tenant, TenantSetting

        self.db.add(Tenant(tenant_id=tenant_id, name=f"Tenant {str(tenant_id)[-3:]}"))
        if self_tuning is not None:
            self.db.add(TenantSetting(tenant_id=tenant_id, self_tuning_enabled=self_tuning))
        await self.db.commit()

    async def accuracy(self, tenant_id: uuid.UUID, predicted: float, actual: float, at: datetime) -> None:
        from ensemble.accuracy import record_accuracy

        await record_accuracy(self.db, tenant_id, predicted, actual, evaluation_date=at)
        await self.db.commit()

    async def reliability(self, tenant_id: uuid.UUID, reliability: float | None, at: datetime, mae: float = 2.0):
        from db.models import ForecastModelMetrics

        self.db.add(
            ForecastModelMetrics(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                reliability=reliability,
                mae_sr=mae,
                sample_size=10,
                computed_at=at,
            )
        )
        await self.db.commit()

    async def weights(
        self,
        tenant_id: uuid.UUID,
        arima: float,
        gradient: float,
        bayes: float,
        at: datetime,
        reliability: float = 80.0,
        mae: float = 2.0,
    ) -> None:
        from ensemble.ledger import WeightVector, append_weights

        await append_weights(
            self.db,
            tenant_id,
            WeightVector(
                weight_arima=arima,
                weight_gradient=gradient,
                weight_bayes=bayes,
                reliability=reliability,
                mae=mae,
            ),
            adjusted_at=at,
        )
        await self.db.commit()

    async def experiment(
        self,
        canary: list[uuid.UUID],
        started_at: datetime,
        family: str = "ensemble",
    ) -> uuid.UUID:
        from ensemble.registry import create_experiment

        return await create_experiment(self.db, canary, family=family, started_at=started_at)

    async def weight_row_count(self, tenant_id: uuid.UUID | None = None) -> int:
        from db.models import EnsembleWeightHistory

        query = select(func.count(EnsembleWeightHistory.id))
        if tenant_id is not None:
            query = query.where(EnsembleWeightHistory.tenant_id == tenant_id)
        return (await self.db.execute(query)).scalar_one()


@pytest.fixture
def seed(test_db):
    return Seeder(test_db)


@pytest.fixture
async def population(seed):
    """
    Two canary tenants, two control tenants, one opted-out tenant and one
    tenant without a settings row.
    """
    await seed.tenant(CANARY_A, self_tuning=True)
    await seed.tenant(CANARY_B, self_tuning=True)
    await seed.tenant(CONTROL_A, self_tuning=True)
    await seed.tenant(CONTROL_B, self_tuning=True)
    await seed.tenant(OPTED_OUT, self_tuning=False)
    await seed.tenant(NO_SETTINGS, self_tuning=None)
    return {
        "canary": [CANARY_A, CANARY_B],
        "control": [CONTROL_A, CONTROL_B, OPTED_OUT],
        "self_tuning": [CANARY_A, CANARY_B, CONTROL_A, CONTROL_B],
    }


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)
