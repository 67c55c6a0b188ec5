from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from bookingsync.core.database import get_db
from bookingsync.integrations.providers.registry import resolve_gateway
from bookingsync.services.booking_notifier import BookingNotifier
from bookingsync.services.sync_reconciler import GatewayFactory, SyncReconciler

_notifier = BookingNotifier()


async def get_tenant_id(x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")) -> str:
    """Tenant resolved by the upstream auth layer"""
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="Missing X-Tenant-ID header")
    return x_tenant_id


def get_gateway_factory() -> GatewayFactory:
    return resolve_gateway


def get_notifier() -> Optional[BookingNotifier]:
    return _notifier


async def get_reconciler(
    db: AsyncSession = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    notifier: Optional[BookingNotifier] = Depends(get_notifier),
) -> SyncReconciler:
    return SyncReconciler(db, gateway_factory=gateway_factory, notifier=notifier)
