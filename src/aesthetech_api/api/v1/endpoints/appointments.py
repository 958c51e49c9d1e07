from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.api.dependencies.results import unwrap_or_raise
from aesthetech_api.api.dependencies.settings import get_settings_snapshot
from aesthetech_api.core.clock import ensure_utc
from aesthetech_api.db.session import get_session
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.appointment import AppointmentStatus
from aesthetech_api.services.appointments import RecurringSeriesService


router = APIRouter(prefix="/appointments", tags=["appointments"])


class DetachRequest(BaseModel):
    performedBy: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: UUID
    seriesId: Optional[UUID] = None
    staffId: UUID
    startTime: dt.datetime
    endTime: dt.datetime
    status: AppointmentStatus
    isDetachedFromSeries: bool


@router.post("/{appointment_id}/detach", response_model=AppointmentResponse)
async def detach_from_series(
    appointment_id: UUID,
    payload: DetachRequest | None = None,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> AppointmentResponse:
    """Edit one occurrence independently; series-wide changes will skip it."""

    result = await RecurringSeriesService(db, salon_settings).detach_occurrence(
        appointment_id,
        performed_by=payload.performedBy if payload else None,
    )
    appointment = unwrap_or_raise(result)
    return AppointmentResponse(
        id=appointment.id,
        seriesId=appointment.series_id,
        staffId=appointment.staff_id,
        startTime=ensure_utc(appointment.start_time),
        endTime=ensure_utc(appointment.end_time),
        status=appointment.status,
        isDetachedFromSeries=appointment.is_detached_from_series,
    )
