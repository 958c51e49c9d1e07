"""Recurring appointment series: preview, booking and lifecycle edits."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.api.dependencies.results import unwrap_or_raise
from aesthetech_api.api.dependencies.settings import get_settings_snapshot
from aesthetech_api.core.clock import ensure_utc
from aesthetech_api.db.session import get_session
from aesthetech_api.domain.recurrence.conflicts import ConflictResolution, ResolutionKind, TimeSlot
from aesthetech_api.domain.recurrence.patterns import (
    RecurrenceConfig,
    RecurrenceEndType,
    RecurrencePattern,
    format_recurrence_summary,
)
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.appointment import Appointment, AppointmentStatus
from aesthetech_api.models.recurring_series import RecurringSeries, RecurringSeriesException
from aesthetech_api.services.appointments import RecurringSeriesService, SeriesChanges, SeriesCreation, SeriesRequest


router = APIRouter(prefix="/recurring-series", tags=["recurring-series"])


class RecurrenceInput(BaseModel):
    pattern: RecurrencePattern
    startDate: dt.date
    timeOfDay: str = Field(..., description="Local start time, HH:MM")
    endType: RecurrenceEndType = RecurrenceEndType.NEVER
    dayOfWeek: Optional[int] = Field(default=None, ge=0, le=6, description="0 = Sunday")
    customWeeks: Optional[int] = None
    specificDays: List[int] = Field(default_factory=list)
    nthWeek: Optional[int] = Field(default=None, description="1-4, or 5 for the last week")
    endAfterCount: Optional[int] = None
    endByDate: Optional[dt.date] = None
    exceptionDates: List[dt.date] = Field(default_factory=list)

    def to_config(self) -> RecurrenceConfig:
        return RecurrenceConfig(
            pattern=self.pattern,
            start_date=self.startDate,
            time_of_day=self.timeOfDay,
            end_type=self.endType,
            day_of_week=self.dayOfWeek,
            custom_weeks=self.customWeeks,
            specific_days=tuple(self.specificDays),
            nth_week=self.nthWeek,
            end_after_count=self.endAfterCount,
            end_by_date=self.endByDate,
            exception_dates=frozenset(self.exceptionDates),
        )


class SeriesInput(BaseModel):
    clientId: UUID
    staffId: UUID
    serviceId: UUID
    recurrence: RecurrenceInput
    bufferMinutes: int = Field(0, ge=0)
    notes: Optional[str] = None

    def to_request(self) -> SeriesRequest:
        return SeriesRequest(
            client_id=self.clientId,
            staff_id=self.staffId,
            service_id=self.serviceId,
            config=self.recurrence.to_config(),
            buffer_minutes=self.bufferMinutes,
            notes=self.notes,
        )


class TimeSlotModel(BaseModel):
    start: dt.datetime
    end: dt.datetime
    staffId: UUID
    staffName: Optional[str] = None


class ConflictResolutionInput(BaseModel):
    date: dt.date
    action: ResolutionKind
    alternative: Optional[TimeSlotModel] = None

    def to_resolution(self) -> ConflictResolution:
        slot = None
        if self.alternative is not None:
            slot = TimeSlot(
                start=self.alternative.start,
                end=self.alternative.end,
                staff_id=self.alternative.staffId,
                staff_name=self.alternative.staffName,
            )
        return ConflictResolution(kind=self.action, alternative=slot)


class SeriesCreateRequest(SeriesInput):
    resolutions: List[ConflictResolutionInput] = Field(default_factory=list)
    performedBy: Optional[str] = None


class ConflictModel(BaseModel):
    date: dt.date
    occurrence: dt.datetime
    reason: str
    alternatives: List[TimeSlotModel]


class SeriesPreviewResponse(BaseModel):
    summary: str
    durationMinutes: int
    estimatedTotal: int
    occurrences: List[dt.datetime]
    available: List[dt.datetime]
    conflicts: List[ConflictModel]
    nextDates: List[dt.datetime] = Field(default_factory=list)


class SeriesResponse(BaseModel):
    id: UUID
    clientId: UUID
    staffId: UUID
    serviceId: UUID
    pattern: RecurrencePattern
    startDate: dt.date
    timeOfDay: str
    endType: RecurrenceEndType
    endAfterCount: Optional[int] = None
    endByDate: Optional[dt.date] = None
    bufferMinutes: int = 0
    notes: Optional[str] = None
    occurrencesCreated: int
    isActive: bool
    isPaused: bool
    pauseReason: Optional[str] = None


class SeriesCreateResponse(BaseModel):
    series: SeriesResponse
    appointmentsCreated: int
    appointmentIds: List[UUID]
    skippedDates: List[dt.date]
    alternativesUsed: int


class SeriesCancellationResponse(BaseModel):
    series: SeriesResponse
    cancelledCount: int


class CancelFromRequest(BaseModel):
    fromDate: dt.date
    performedBy: Optional[str] = None


class PauseRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    performedBy: Optional[str] = None


class ActorRequest(BaseModel):
    performedBy: Optional[str] = None


class ExtendRequest(BaseModel):
    additionalMonths: int = Field(..., ge=1, le=24)
    performedBy: Optional[str] = None


class SeriesExtensionResponse(BaseModel):
    series: SeriesResponse
    createdCount: int
    skippedDates: List[dt.date]


class ExceptionRequest(BaseModel):
    date: dt.date
    reason: Optional[str] = Field(default=None, max_length=500)
    performedBy: Optional[str] = None


class ExceptionResponse(BaseModel):
    id: UUID
    seriesId: UUID
    date: dt.date
    reason: Optional[str] = None


class SeriesAppointmentModel(BaseModel):
    id: UUID
    staffId: UUID
    start: dt.datetime
    end: dt.datetime
    status: AppointmentStatus
    isDetached: bool


class SeriesDetailResponse(SeriesResponse):
    summary: str
    appointments: List[SeriesAppointmentModel]
    exceptions: List[ExceptionResponse]


class SeriesUpdateRequest(BaseModel):
    staffId: Optional[UUID] = None
    timeOfDay: Optional[str] = Field(default=None, description="Local start time, HH:MM")
    notes: Optional[str] = Field(default=None, description="Empty string clears the notes")
    bufferMinutes: Optional[int] = Field(default=None, ge=0)
    performedBy: Optional[str] = None


class SeriesUpdateResponse(BaseModel):
    series: SeriesResponse
    updatedCount: int
    skippedDueToConflict: List[dt.date]


class CloneRequest(BaseModel):
    startDate: Optional[dt.date] = None
    clientId: Optional[UUID] = None
    staffId: Optional[UUID] = None
    timeOfDay: Optional[str] = None
    resolutions: List[ConflictResolutionInput] = Field(default_factory=list)
    performedBy: Optional[str] = None


def _series_service(db: AsyncSession, salon_settings: SettingsSnapshot) -> RecurringSeriesService:
    return RecurringSeriesService(db, salon_settings)


def _slot(slot: TimeSlot) -> TimeSlotModel:
    return TimeSlotModel(start=slot.start, end=slot.end, staffId=slot.staff_id, staffName=slot.staff_name)


def _serialize_series(series: RecurringSeries) -> SeriesResponse:
    return SeriesResponse(
        id=series.id,
        clientId=series.client_id,
        staffId=series.staff_id,
        serviceId=series.service_id,
        pattern=series.pattern,
        startDate=series.start_date,
        timeOfDay=series.time_of_day,
        endType=series.end_type,
        endAfterCount=series.end_after_count,
        endByDate=series.end_by_date,
        bufferMinutes=series.buffer_minutes or 0,
        notes=series.notes,
        occurrencesCreated=series.occurrences_created,
        isActive=series.is_active,
        isPaused=series.is_paused,
        pauseReason=series.pause_reason,
    )


def _serialize_exception(exception: RecurringSeriesException) -> ExceptionResponse:
    return ExceptionResponse(
        id=exception.id,
        seriesId=exception.series_id,
        date=exception.date,
        reason=exception.reason,
    )


def _serialize_appointment(appointment: Appointment) -> SeriesAppointmentModel:
    return SeriesAppointmentModel(
        id=appointment.id,
        staffId=appointment.staff_id,
        start=ensure_utc(appointment.start_time),
        end=ensure_utc(appointment.end_time),
        status=appointment.status,
        isDetached=appointment.is_detached_from_series,
    )


def _creation_response(creation: SeriesCreation) -> SeriesCreateResponse:
    return SeriesCreateResponse(
        series=_serialize_series(creation.series),
        appointmentsCreated=creation.created_count,
        appointmentIds=[appointment.id for appointment in creation.appointments],
        skippedDates=creation.skipped_dates,
        alternativesUsed=creation.alternatives_used,
    )


@router.get("", response_model=List[SeriesResponse])
async def list_series(
    clientId: Optional[UUID] = None,
    staffId: Optional[UUID] = None,
    activeOnly: bool = True,
    includePaused: bool = True,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> List[SeriesResponse]:
    series = await _series_service(db, salon_settings).list_series(
        client_id=clientId,
        staff_id=staffId,
        active_only=activeOnly,
        include_paused=includePaused,
    )
    return [_serialize_series(item) for item in series]


@router.post("/preview", response_model=SeriesPreviewResponse)
async def preview_series(
    payload: SeriesInput,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesPreviewResponse:
    """Expand the pattern and flag conflicting dates without writing anything."""

    preview = unwrap_or_raise(await _series_service(db, salon_settings).preview(payload.to_request()))
    zone = salon_settings.zone
    return SeriesPreviewResponse(
        summary=preview.summary,
        durationMinutes=int(preview.duration.total_seconds() // 60),
        estimatedTotal=preview.estimated_total,
        occurrences=preview.occurrences,
        available=list(preview.report.available),
        conflicts=[
            ConflictModel(
                date=conflict.occurrence.astimezone(zone).date(),
                occurrence=conflict.occurrence,
                reason=conflict.reason,
                alternatives=[_slot(slot) for slot in conflict.alternatives],
            )
            for conflict in preview.report.conflicts
        ],
        nextDates=preview.next_dates,
    )


@router.post("", response_model=SeriesCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_series(
    payload: SeriesCreateRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesCreateResponse:
    resolutions = {item.date: item.to_resolution() for item in payload.resolutions}
    result = await _series_service(db, salon_settings).create_series(
        payload.to_request(),
        resolutions,
        performed_by=payload.performedBy,
    )
    return _creation_response(unwrap_or_raise(result))


@router.post("/{series_id}/cancel", response_model=SeriesCancellationResponse)
async def cancel_series(
    series_id: UUID,
    payload: ActorRequest | None = None,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesCancellationResponse:
    performed_by = payload.performedBy if payload else None
    result = await _series_service(db, salon_settings).cancel_series(series_id, performed_by=performed_by)
    outcome = unwrap_or_raise(result)
    return SeriesCancellationResponse(series=_serialize_series(outcome.series), cancelledCount=outcome.cancelled_count)


@router.post("/{series_id}/cancel-from", response_model=SeriesCancellationResponse)
async def cancel_series_from_date(
    series_id: UUID,
    payload: CancelFromRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesCancellationResponse:
    result = await _series_service(db, salon_settings).cancel_from_date(
        series_id,
        payload.fromDate,
        performed_by=payload.performedBy,
    )
    outcome = unwrap_or_raise(result)
    return SeriesCancellationResponse(series=_serialize_series(outcome.series), cancelledCount=outcome.cancelled_count)


@router.post("/{series_id}/pause", response_model=SeriesResponse)
async def pause_series(
    series_id: UUID,
    payload: PauseRequest | None = None,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesResponse:
    payload = payload or PauseRequest()
    result = await _series_service(db, salon_settings).pause_series(
        series_id,
        reason=payload.reason,
        performed_by=payload.performedBy,
    )
    return _serialize_series(unwrap_or_raise(result))


@router.post("/{series_id}/resume", response_model=SeriesResponse)
async def resume_series(
    series_id: UUID,
    payload: ActorRequest | None = None,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesResponse:
    performed_by = payload.performedBy if payload else None
    result = await _series_service(db, salon_settings).resume_series(series_id, performed_by=performed_by)
    return _serialize_series(unwrap_or_raise(result))


@router.post("/{series_id}/extend", response_model=SeriesExtensionResponse)
async def extend_series(
    series_id: UUID,
    payload: ExtendRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesExtensionResponse:
    result = await _series_service(db, salon_settings).extend_series(
        series_id,
        payload.additionalMonths,
        performed_by=payload.performedBy,
    )
    extension = unwrap_or_raise(result)
    return SeriesExtensionResponse(
        series=_serialize_series(extension.series),
        createdCount=extension.created_count,
        skippedDates=extension.skipped_dates,
    )


@router.post(
    "/{series_id}/exceptions",
    response_model=ExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_series_exception(
    series_id: UUID,
    payload: ExceptionRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> ExceptionResponse:
    result = await _series_service(db, salon_settings).add_exception(
        series_id,
        payload.date,
        reason=payload.reason,
        performed_by=payload.performedBy,
    )
    return _serialize_exception(unwrap_or_raise(result))


@router.delete("/exceptions/{exception_id}", response_model=ExceptionResponse)
async def remove_series_exception(
    exception_id: UUID,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> ExceptionResponse:
    result = await _series_service(db, salon_settings).remove_exception(exception_id)
    return _serialize_exception(unwrap_or_raise(result))


@router.get("/{series_id}", response_model=SeriesDetailResponse)
async def get_series(
    series_id: UUID,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesDetailResponse:
    series = unwrap_or_raise(await _series_service(db, salon_settings).get_series(series_id))
    base = _serialize_series(series)
    return SeriesDetailResponse(
        **base.model_dump(),
        summary=format_recurrence_summary(series.to_config()),
        appointments=[_serialize_appointment(appointment) for appointment in series.appointments],
        exceptions=[_serialize_exception(exception) for exception in series.exceptions],
    )


@router.get("/{series_id}/exceptions", response_model=List[ExceptionResponse])
async def list_series_exceptions(
    series_id: UUID,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> List[ExceptionResponse]:
    exceptions = unwrap_or_raise(await _series_service(db, salon_settings).list_exceptions(series_id))
    return [_serialize_exception(exception) for exception in exceptions]


@router.patch("/{series_id}", response_model=SeriesUpdateResponse)
async def update_series(
    series_id: UUID,
    payload: SeriesUpdateRequest,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesUpdateResponse:
    """Edit the series and move its future, non-detached appointments along with it."""

    result = await _series_service(db, salon_settings).update_series(
        series_id,
        SeriesChanges(
            staff_id=payload.staffId,
            time_of_day=payload.timeOfDay,
            notes=payload.notes,
            buffer_minutes=payload.bufferMinutes,
        ),
        performed_by=payload.performedBy,
    )
    update = unwrap_or_raise(result)
    return SeriesUpdateResponse(
        series=_serialize_series(update.series),
        updatedCount=update.updated_count,
        skippedDueToConflict=update.skipped_dates,
    )


@router.post("/{series_id}/clone", response_model=SeriesCreateResponse, status_code=status.HTTP_201_CREATED)
async def clone_series(
    series_id: UUID,
    payload: CloneRequest | None = None,
    db: AsyncSession = Depends(get_session),
    salon_settings: SettingsSnapshot = Depends(get_settings_snapshot),
) -> SeriesCreateResponse:
    payload = payload or CloneRequest()
    result = await _series_service(db, salon_settings).clone_series(
        series_id,
        start_date=payload.startDate,
        client_id=payload.clientId,
        staff_id=payload.staffId,
        time_of_day=payload.timeOfDay,
        resolutions={item.date: item.to_resolution() for item in payload.resolutions},
        performed_by=payload.performedBy,
    )
    return _creation_response(unwrap_or_raise(result))
