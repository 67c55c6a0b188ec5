from typing import Optional, List

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from bookingsync.core.errors import NotFoundError
from bookingsync.models import CalendarChannel, Tenant


class TenantService:
    """
    Tenant calendar configuration and push channel registrations
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== TENANTS ====================

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        """Get tenant by ID"""
        result = await self.session.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none()

    async def require_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return tenant

    async def update_tenant(self, tenant_id: str, data: dict) -> Tenant:
        """Update tenant fields by ID."""
        tenant = await self.require_tenant(tenant_id)
        for key, value in data.items():
            setattr(tenant, key, value)
        await self.session.commit()
        await self.session.refresh(tenant)
        return tenant

    # ==================== CHANNELS ====================

    async def get_channel(self, channel_id: str) -> Optional[CalendarChannel]:
        result = await self.session.execute(
            select(CalendarChannel).where(CalendarChannel.id == channel_id)
        )
        return result.scalar_one_or_none()

    async def list_channels(self, tenant_id: str) -> List[CalendarChannel]:
        result = await self.session.execute(
            select(CalendarChannel)
            .where(CalendarChannel.tenant_id == tenant_id)
            .order_by(CalendarChannel.created_at)
        )
        return list(result.scalars().all())

    async def save_channel(self, data: dict) -> CalendarChannel:
        channel = CalendarChannel(**data)
        self.session.add(channel)
        await self.session.commit()
        await self.session.refresh(channel)
        return channel

    async def delete_channels(self, tenant_id: str) -> None:
        await self.session.execute(
            delete(CalendarChannel).where(CalendarChannel.tenant_id == tenant_id)
        )
        await self.session.commit()
