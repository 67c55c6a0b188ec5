"""Booking and availability endpoints"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bookingsync.api.v1.deps import get_gateway_factory, get_reconciler, get_tenant_id
from bookingsync.core.clock import as_aware_utc
from bookingsync.core.database import get_db
from bookingsync.core.errors import ValidationError
from bookingsync.integrations.providers.registry import get_calendar_config
from bookingsync.models import Booking
from bookingsync.services.availability import AvailabilityResolver
from bookingsync.services.booking_store import BookingStore
from bookingsync.services.slots import BusinessHours
from bookingsync.services.sync_reconciler import GatewayFactory, SyncReconciler
from bookingsync.services.tenant_service import TenantService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


class BookingCreateRequest(BaseModel):
    vehicle_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    service_type: str = Field(..., min_length=1)
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None


class BookingUpdateRequest(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    service_type: Optional[str] = None
    notes: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    status: Optional[str] = None


class BookingResponse(BaseModel):
    id: uuid.UUID
    tenant_id: str
    vehicle_id: str
    customer_id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    service_type: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    external_event_id: Optional[str] = None
    cancellation_pending: bool
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            tenant_id=booking.tenant_id,
            vehicle_id=booking.vehicle_id,
            customer_id=booking.customer_id,
            customer_name=booking.customer_name,
            customer_email=booking.customer_email,
            customer_phone=booking.customer_phone,
            service_type=booking.service_type,
            start_time=as_aware_utc(booking.start_time),
            end_time=as_aware_utc(booking.end_time),
            duration_minutes=booking.duration_minutes,
            status=booking.status,
            external_event_id=booking.external_event_id,
            cancellation_pending=booking.cancellation_pending,
            notes=booking.notes,
            created_at=as_aware_utc(booking.created_at),
            updated_at=as_aware_utc(booking.updated_at),
        )


class SlotResponse(BaseModel):
    start: datetime
    end: datetime


class AvailabilityResponse(BaseModel):
    tenant_id: str
    duration_minutes: int
    slots: List[SlotResponse]


@router.post("/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    payload: BookingCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> BookingResponse:
    data = payload.model_dump(exclude={"duration_minutes"}, exclude_none=True)
    if payload.end_time is None:
        if payload.duration_minutes is None:
            raise ValidationError("Either end_time or duration_minutes is required")
        data["end_time"] = payload.start_time + timedelta(minutes=payload.duration_minutes)

    booking = await reconciler.create_booking(tenant_id, data)
    return BookingResponse.from_booking(booking)


@router.patch("/bookings/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: str,
    payload: BookingUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> BookingResponse:
    changes = payload.model_dump(exclude_unset=True)
    booking = await reconciler.update_booking(tenant_id, booking_id, changes)
    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    tenant_id: str = Depends(get_tenant_id),
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> BookingResponse:
    booking = await reconciler.cancel_booking(tenant_id, booking_id)
    return BookingResponse.from_booking(booking)


@router.get("/bookings", response_model=List[BookingResponse])
async def list_bookings(
    start: datetime = Query(...),
    end: datetime = Query(...),
    status: Optional[str] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> List[BookingResponse]:
    bookings = await BookingStore(db).list_by_date_range(tenant_id, start, end, status=status)
    return [BookingResponse.from_booking(b) for b in bookings]


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    start: datetime = Query(...),
    end: datetime = Query(...),
    duration_minutes: int = Query(...),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> AvailabilityResponse:
    tenant = await TenantService(db).require_tenant(tenant_id)
    config = get_calendar_config(tenant)

    resolver = AvailabilityResolver(
        gateway_factory(tenant),
        business_hours=BusinessHours.from_working_hours(config["working_hours"], config["timezone"]),
        step_minutes=config["step_minutes"],
        store=BookingStore(db),
    )
    slots = await resolver.find_available_slots(
        tenant_id, config["calendar_id"], start, end, duration_minutes
    )
    return AvailabilityResponse(
        tenant_id=tenant_id,
        duration_minutes=duration_minutes,
        slots=[SlotResponse(start=s.start, end=s.end) for s in slots],
    )
