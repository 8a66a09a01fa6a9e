"""
Tenant populations for canary experiments.

The control group is every tenant that has a settings row, minus the canary
group. Tenants without a settings row belong to neither the control baseline
nor the rollout audience.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import TenantSetting


async def tenants_with_settings(db: AsyncSession) -> list[uuid.UUID]:
    result = await db.execute(select(TenantSetting.tenant_id).order_by(TenantSetting.tenant_id))
    return [row.tenant_id for row in result.all()]


async def self_tuning_tenants(db: AsyncSession) -> list[uuid.UUID]:
    """Tenants opted in to receive rolled-out weights."""
    result = await db.execute(
        select(TenantSetting.tenant_id)
        .where(TenantSetting.self_tuning_enabled.is_(True))
        .order_by(TenantSetting.tenant_id)
    )
    return [row.tenant_id for row in result.all()]


def control_population(settings_tenants: list[uuid.UUID], canary: list[uuid.UUID]) -> list[uuid.UUID]:
    """control = tenants-with-settings \\ canary, order preserved."""
    canary_set = set(canary)
    return [tenant_id for tenant_id in settings_tenants if tenant_id not in canary_set]
