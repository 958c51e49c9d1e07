"""Recurring series lifecycle: preview, creation with conflict resolution, and edits."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID

from dateutil.relativedelta import relativedelta
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from aesthetech_api.core.clock import SalonClock, ensure_utc
from aesthetech_api.core.settings import settings as app_settings
from aesthetech_api.db.transactions import lock_for_update, with_transaction
from aesthetech_api.domain.recurrence.conflicts import (
    ConflictReport,
    ConflictResolution,
    detect_conflicts,
    resolve_conflicts,
)
from aesthetech_api.domain.recurrence.generator import estimate_occurrences, generate_occurrences, preview_dates
from aesthetech_api.domain.recurrence.patterns import (
    RecurrenceConfig,
    RecurrenceEndType,
    format_recurrence_summary,
    validate_recurrence_config,
)
from aesthetech_api.domain.results import (
    ConsistencyViolation,
    EngineErrorKind,
    EngineFailure,
    EngineResult,
    ResourceNotFound,
    ValidationViolation,
)
from aesthetech_api.domain.settings import SettingsSnapshot, is_valid_time_of_day, parse_time_of_day
from aesthetech_api.models.appointment import CLOSED_STATUSES, Appointment, AppointmentStatus
from aesthetech_api.models.catalog import SalonService
from aesthetech_api.models.client import Client, StaffMember
from aesthetech_api.models.recurring_series import (
    RecurringSeries,
    RecurringSeriesAuditLog,
    RecurringSeriesException,
    SeriesAuditAction,
)
from aesthetech_api.services.appointments.availability import AvailabilityService


@dataclass(frozen=True)
class SeriesRequest:
    client_id: UUID
    staff_id: UUID
    service_id: UUID
    config: RecurrenceConfig
    buffer_minutes: int = 0
    notes: str | None = None


@dataclass(frozen=True)
class SeriesPreview:
    summary: str
    duration: dt.timedelta
    estimated_total: int
    report: ConflictReport
    next_dates: list[dt.datetime] = field(default_factory=list)

    @property
    def occurrences(self) -> list[dt.datetime]:
        return sorted([*self.report.available, *(conflict.occurrence for conflict in self.report.conflicts)])


@dataclass(frozen=True)
class SeriesCreation:
    series: RecurringSeries
    appointments: list[Appointment]
    skipped_dates: list[dt.date] = field(default_factory=list)
    alternatives_used: int = 0

    @property
    def created_count(self) -> int:
        return len(self.appointments)


@dataclass(frozen=True)
class SeriesExtension:
    series: RecurringSeries
    created_count: int
    skipped_dates: list[dt.date]


@dataclass(frozen=True)
class SeriesCancellation:
    series: RecurringSeries
    cancelled_count: int


@dataclass(frozen=True)
class SeriesChanges:
    """Fields left as ``None`` are kept; an empty ``notes`` string clears the notes."""

    staff_id: UUID | None = None
    time_of_day: str | None = None
    notes: str | None = None
    buffer_minutes: int | None = None


@dataclass(frozen=True)
class SeriesUpdate:
    series: RecurringSeries
    changes: dict[str, Any]
    updated_count: int
    skipped_dates: list[dt.date] = field(default_factory=list)


class RecurringSeriesService:
    """Every mutating operation runs in one transaction and leaves an audit entry."""

    def __init__(
        self,
        db_session: AsyncSession,
        settings: SettingsSnapshot,
        *,
        now: Callable[[], dt.datetime] | None = None,
        availability: AvailabilityService | None = None,
        max_occurrences: int | None = None,
        never_horizon_months: int | None = None,
    ) -> None:
        self._db = db_session
        self._settings = settings
        self._clock = SalonClock.for_zone(settings.timezone, source=now)
        self._availability = availability or AvailabilityService(db_session, settings)
        self._max_occurrences = max_occurrences or app_settings.recurrence_max_occurrences
        self._never_horizon_months = never_horizon_months or app_settings.recurrence_never_horizon_months

    # -- shared helpers -------------------------------------------------

    def _generate(self, config: RecurrenceConfig, *, now: dt.datetime | None = None) -> list[dt.datetime]:
        return generate_occurrences(
            config,
            now=now or self._clock.now(),
            tz=self._clock.timezone,
            max_occurrences=self._max_occurrences,
            never_horizon_months=self._never_horizon_months,
        )

    def _day_bounds(self, day: dt.date) -> tuple[dt.datetime, dt.datetime]:
        start = dt.datetime.combine(day, dt.time.min, tzinfo=self._clock.timezone)
        end = dt.datetime.combine(day + dt.timedelta(days=1), dt.time.min, tzinfo=self._clock.timezone)
        return start.astimezone(dt.timezone.utc), end.astimezone(dt.timezone.utc)

    async def _load_participants(self, request: SeriesRequest) -> tuple[Client, StaffMember, SalonService]:
        client = await self._db.get(Client, request.client_id)
        if client is None or not client.is_active:
            raise ValidationViolation("Client not found or inactive")
        service = await self._db.get(SalonService, request.service_id)
        if service is None or not service.is_active:
            raise ValidationViolation("Service not found or inactive")
        staff = await self._db.get(StaffMember, request.staff_id)
        if staff is None or not staff.is_active:
            raise ValidationViolation("Staff member not found or inactive")
        return client, staff, service

    @staticmethod
    def _validate_config(config: RecurrenceConfig, buffer_minutes: int = 0) -> None:
        errors = validate_recurrence_config(config)
        if buffer_minutes < 0:
            errors.append("Buffer minutes cannot be negative")
        if errors:
            raise ValidationViolation(errors[0], errors=errors)

    @staticmethod
    def _duration(service: SalonService, buffer_minutes: int) -> dt.timedelta:
        return dt.timedelta(minutes=int(service.duration_minutes) + int(buffer_minutes or 0))

    async def _detect(
        self,
        occurrences: Sequence[dt.datetime],
        staff_id: UUID,
        duration: dt.timedelta,
    ) -> ConflictReport:
        return await detect_conflicts(
            occurrences,
            staff_id,
            duration=duration,
            has_overlap=self._availability.has_overlap,
            find_alternatives=self._availability.find_alternatives,
        )

    async def _load_series(self, series_id: UUID) -> RecurringSeries:
        stmt = lock_for_update(select(RecurringSeries).where(RecurringSeries.id == series_id))
        series = (await self._db.execute(stmt)).scalar_one_or_none()
        if series is None:
            raise ResourceNotFound("Recurring series not found", series_id=str(series_id))
        return series

    async def _exception_dates(self, series_id: UUID) -> set[dt.date]:
        stmt = select(RecurringSeriesException.date).where(RecurringSeriesException.series_id == series_id)
        return set((await self._db.execute(stmt)).scalars().all())

    async def _open_appointments(
        self,
        series_id: UUID,
        *,
        starting_at: dt.datetime | None = None,
        before: dt.datetime | None = None,
    ) -> list[Appointment]:
        stmt = lock_for_update(
            select(Appointment).where(
                Appointment.series_id == series_id,
                Appointment.status.not_in(CLOSED_STATUSES),
                Appointment.is_detached_from_series.is_(False),
            )
        )
        if starting_at is not None:
            stmt = stmt.where(Appointment.start_time >= starting_at.astimezone(dt.timezone.utc))
        if before is not None:
            stmt = stmt.where(Appointment.start_time < before.astimezone(dt.timezone.utc))
        return list((await self._db.execute(stmt)).scalars().all())

    @staticmethod
    def _cancel(appointments: Sequence[Appointment]) -> int:
        for appointment in appointments:
            appointment.status = AppointmentStatus.CANCELLED
        return len(appointments)

    def _audit(
        self,
        series_id: UUID,
        action: SeriesAuditAction,
        performed_by: str | None,
        changes: Mapping[str, Any] | None = None,
    ) -> None:
        self._db.add(
            RecurringSeriesAuditLog(
                series_id=series_id,
                action=action,
                performed_by=performed_by,
                changes=dict(changes) if changes else None,
                created_at=self._clock.now(),
            )
        )

    # -- reads ----------------------------------------------------------

    async def list_series(
        self,
        *,
        client_id: UUID | None = None,
        staff_id: UUID | None = None,
        active_only: bool = True,
        include_paused: bool = True,
    ) -> list[RecurringSeries]:
        stmt = select(RecurringSeries).order_by(RecurringSeries.created_at.desc(), RecurringSeries.id)
        if client_id is not None:
            stmt = stmt.where(RecurringSeries.client_id == client_id)
        if staff_id is not None:
            stmt = stmt.where(RecurringSeries.staff_id == staff_id)
        if active_only:
            stmt = stmt.where(RecurringSeries.is_active.is_(True))
        if not include_paused:
            stmt = stmt.where(RecurringSeries.is_paused.is_(False))
        return list((await self._db.execute(stmt)).scalars().all())

    async def get_series(self, series_id: UUID) -> EngineResult[RecurringSeries]:
        """Series with its appointments and exception dates loaded."""

        stmt = (
            select(RecurringSeries)
            .where(RecurringSeries.id == series_id)
            .options(selectinload(RecurringSeries.appointments), selectinload(RecurringSeries.exceptions))
            .execution_options(populate_existing=True)
        )
        series = (await self._db.execute(stmt)).scalar_one_or_none()
        if series is None:
            return EngineResult.fail(EngineErrorKind.NOT_FOUND, "Recurring series not found", series_id=str(series_id))
        return EngineResult.ok(series)

    async def list_exceptions(self, series_id: UUID) -> EngineResult[list[RecurringSeriesException]]:
        if await self._db.get(RecurringSeries, series_id) is None:
            return EngineResult.fail(EngineErrorKind.NOT_FOUND, "Recurring series not found", series_id=str(series_id))
        stmt = (
            select(RecurringSeriesException)
            .where(RecurringSeriesException.series_id == series_id)
            .order_by(RecurringSeriesException.date)
        )
        return EngineResult.ok(list((await self._db.execute(stmt)).scalars().all()))

    # -- preview and creation -------------------------------------------

    async def preview(self, request: SeriesRequest) -> EngineResult[SeriesPreview]:
        """Occurrences with per-date conflicts and suggested alternatives; nothing is written."""

        try:
            self._validate_config(request.config, request.buffer_minutes)
            _, _, service = await self._load_participants(request)
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        duration = self._duration(service, request.buffer_minutes)
        occurrences = self._generate(request.config)
        report = await self._detect(occurrences, request.staff_id, duration)
        return EngineResult.ok(
            SeriesPreview(
                summary=format_recurrence_summary(request.config),
                duration=duration,
                estimated_total=estimate_occurrences(
                    request.config,
                    now=self._clock.now(),
                    tz=self._clock.timezone,
                    never_horizon_months=self._never_horizon_months,
                ),
                report=report,
                next_dates=preview_dates(
                    request.config,
                    now=self._clock.now(),
                    tz=self._clock.timezone,
                    never_horizon_months=self._never_horizon_months,
                ),
            )
        )

    async def create_series(
        self,
        request: SeriesRequest,
        resolutions: Mapping[dt.date, ConflictResolution] | None = None,
        *,
        performed_by: str | None = None,
    ) -> EngineResult[SeriesCreation]:
        """Persist the series, its exceptions and all appointments, or nothing at all."""

        resolutions = dict(resolutions or {})
        config = request.config
        try:
            async with with_transaction(self._db):
                self._validate_config(config, request.buffer_minutes)
                _, _, service = await self._load_participants(request)
                duration = self._duration(service, request.buffer_minutes)

                occurrences = self._generate(config)
                if not occurrences:
                    raise ValidationViolation("No valid dates found for the recurring pattern")
                report = await self._detect(occurrences, request.staff_id, duration)
                resolved = resolve_conflicts(report, resolutions, staff_id=request.staff_id, duration=duration)
                if not resolved.success:
                    raise ValidationViolation(resolved.error.message, **resolved.error.details)
                plan = resolved.unwrap()

                for planned in plan.planned:
                    if not planned.from_alternative:
                        continue
                    if self._clock.localize(planned.slot.start).date() in config.exception_dates:
                        raise ValidationViolation(
                            "Alternative falls on an exception date",
                            date=planned.occurrence_date.isoformat(),
                        )
                    if await self._availability.has_overlap(planned.slot.staff_id, planned.slot.start, planned.slot.end):
                        raise ConsistencyViolation(
                            "Alternative slot is no longer available",
                            date=planned.occurrence_date.isoformat(),
                        )
                if not plan.planned:
                    raise ValidationViolation("Every occurrence was skipped; nothing to create")

                series = RecurringSeries(
                    client_id=request.client_id,
                    staff_id=request.staff_id,
                    service_id=request.service_id,
                    pattern=config.pattern,
                    start_date=config.start_date,
                    time_of_day=config.time_of_day,
                    day_of_week=config.day_of_week,
                    custom_weeks=config.custom_weeks,
                    specific_days=sorted(set(config.specific_days)),
                    nth_week=config.nth_week,
                    end_type=config.end_type,
                    end_after_count=config.end_after_count,
                    end_by_date=config.end_by_date,
                    buffer_minutes=request.buffer_minutes,
                    occurrences_created=len(plan.planned),
                    notes=request.notes,
                    is_active=True,
                    is_paused=False,
                )
                self._db.add(series)
                await self._db.flush()

                skipped = set(plan.skipped_dates)
                for exception_date in sorted(set(config.exception_dates) | skipped):
                    self._db.add(
                        RecurringSeriesException(
                            series_id=series.id,
                            date=exception_date,
                            reason="Skipped due to conflict" if exception_date in skipped else None,
                        )
                    )

                appointments = [
                    Appointment(
                        client_id=request.client_id,
                        staff_id=planned.slot.staff_id,
                        service_id=request.service_id,
                        start_time=planned.slot.start.astimezone(dt.timezone.utc),
                        end_time=planned.slot.end.astimezone(dt.timezone.utc),
                        status=AppointmentStatus.SCHEDULED,
                        notes=request.notes,
                        series_id=series.id,
                    )
                    for planned in plan.planned
                ]
                self._db.add_all(appointments)
                alternatives_used = sum(1 for planned in plan.planned if planned.from_alternative)
                self._audit(
                    series.id,
                    SeriesAuditAction.CREATED,
                    performed_by,
                    {
                        "pattern": config.pattern.value,
                        "appointmentsCreated": len(appointments),
                        "skippedDates": [value.isoformat() for value in plan.skipped_dates],
                        "alternativesUsed": alternatives_used,
                    },
                )
                await self._db.flush()
        except EngineFailure as failure:
            logger.info("Rejected recurring series", client_id=str(request.client_id), reason=failure.error.message)
            return EngineResult.from_failure(failure)
        except IntegrityError:
            logger.warning("Recurring series creation collided with a concurrent write")
            return EngineResult.fail(
                EngineErrorKind.CONSISTENCY,
                "Recurring series conflicted with a concurrent update; retry",
            )

        logger.info(
            "Created recurring series",
            series_id=str(series.id),
            pattern=config.pattern.value,
            appointments=len(appointments),
            skipped=len(plan.skipped_dates),
            alternatives_used=alternatives_used,
        )
        return EngineResult.ok(
            SeriesCreation(
                series=series,
                appointments=appointments,
                skipped_dates=list(plan.skipped_dates),
                alternatives_used=alternatives_used,
            )
        )

    # -- edits ----------------------------------------------------------

    async def update_series(
        self,
        series_id: UUID,
        changes: SeriesChanges,
        *,
        performed_by: str | None = None,
    ) -> EngineResult[SeriesUpdate]:
        """Change the series template and carry it onto future open appointments.

        Detached occurrences are left alone. An appointment whose new slot
        would overlap another booking keeps its old time and staff member, and
        its date is reported in ``skipped_dates``.
        """

        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                if not series.is_active:
                    raise ValidationViolation("Cannot update cancelled series")
                if changes.time_of_day is not None and not is_valid_time_of_day(changes.time_of_day):
                    raise ValidationViolation("Time must be in HH:MM format")
                if changes.buffer_minutes is not None and changes.buffer_minutes < 0:
                    raise ValidationViolation("Buffer minutes cannot be negative")
                if changes.staff_id is not None:
                    staff = await self._db.get(StaffMember, changes.staff_id)
                    if staff is None or not staff.is_active:
                        raise ValidationViolation("Staff member not found or inactive")

                diff: dict[str, Any] = {}
                if changes.staff_id is not None and changes.staff_id != series.staff_id:
                    diff["staffId"] = {"from": str(series.staff_id), "to": str(changes.staff_id)}
                    series.staff_id = changes.staff_id
                if changes.time_of_day is not None and changes.time_of_day != series.time_of_day:
                    diff["timeOfDay"] = {"from": series.time_of_day, "to": changes.time_of_day}
                    series.time_of_day = changes.time_of_day
                if changes.buffer_minutes is not None and changes.buffer_minutes != series.buffer_minutes:
                    diff["bufferMinutes"] = {"from": series.buffer_minutes, "to": changes.buffer_minutes}
                    series.buffer_minutes = changes.buffer_minutes
                if changes.notes is not None:
                    new_notes = changes.notes or None
                    if new_notes != series.notes:
                        diff["notes"] = {"from": series.notes, "to": new_notes}
                        series.notes = new_notes

                updated = 0
                skipped: list[dt.date] = []
                if diff:
                    self._audit(series_id, SeriesAuditAction.UPDATED, performed_by, diff)
                    updated, skipped = await self._propagate(
                        series,
                        reschedule=bool(diff.keys() - {"notes"}),
                        sync_notes="notes" in diff,
                    )
                    self._audit(
                        series_id,
                        SeriesAuditAction.APPOINTMENTS_UPDATED,
                        performed_by,
                        {"updatedCount": updated, "skippedDates": [value.isoformat() for value in skipped]},
                    )
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info(
            "Updated recurring series",
            series_id=str(series_id),
            fields=sorted(diff),
            updated=updated,
            skipped=len(skipped),
        )
        return EngineResult.ok(SeriesUpdate(series=series, changes=diff, updated_count=updated, skipped_dates=skipped))

    async def _propagate(
        self,
        series: RecurringSeries,
        *,
        reschedule: bool,
        sync_notes: bool,
    ) -> tuple[int, list[dt.date]]:
        service = await self._db.get(SalonService, series.service_id)
        if service is None:
            raise ValidationViolation("Service not found or inactive")
        duration = self._duration(service, series.buffer_minutes)
        start_time = parse_time_of_day(series.time_of_day)

        updated = 0
        skipped: list[dt.date] = []
        appointments = await self._open_appointments(series.id, starting_at=self._clock.now())
        for appointment in sorted(appointments, key=lambda item: ensure_utc(item.start_time)):
            touched = False
            if reschedule:
                day = self._clock.localize(ensure_utc(appointment.start_time)).date()
                start = dt.datetime.combine(day, start_time, tzinfo=self._clock.timezone)
                end = start + duration
                if await self._availability.has_overlap(
                    series.staff_id,
                    start,
                    end,
                    exclude_appointment_id=appointment.id,
                ):
                    skipped.append(day)
                else:
                    appointment.staff_id = series.staff_id
                    appointment.start_time = start.astimezone(dt.timezone.utc)
                    appointment.end_time = end.astimezone(dt.timezone.utc)
                    touched = True
            if sync_notes and appointment.notes != series.notes:
                appointment.notes = series.notes
                touched = True
            if touched:
                updated += 1
        return updated, skipped

    async def clone_series(
        self,
        series_id: UUID,
        *,
        start_date: dt.date | None = None,
        client_id: UUID | None = None,
        staff_id: UUID | None = None,
        time_of_day: str | None = None,
        resolutions: Mapping[dt.date, ConflictResolution] | None = None,
        performed_by: str | None = None,
    ) -> EngineResult[SeriesCreation]:
        """Book a new series with the same pattern, optionally for another client or slot.

        Exception dates are not copied. Without ``start_date`` the copy starts
        on the original start date, or today once that has passed.
        """

        original = await self._db.get(RecurringSeries, series_id)
        if original is None:
            return EngineResult.fail(EngineErrorKind.NOT_FOUND, "Original series not found", series_id=str(series_id))
        source_id = original.id
        config = replace(
            original.to_config(),
            start_date=start_date or max(original.start_date, self._clock.today()),
            time_of_day=time_of_day or original.time_of_day,
        )
        request = SeriesRequest(
            client_id=client_id or original.client_id,
            staff_id=staff_id or original.staff_id,
            service_id=original.service_id,
            config=config,
            buffer_minutes=int(original.buffer_minutes or 0),
            notes=original.notes,
        )

        created = await self.create_series(request, resolutions, performed_by=performed_by)
        if not created.success:
            return created
        creation = created.unwrap()
        async with with_transaction(self._db):
            self._audit(
                source_id,
                SeriesAuditAction.CLONED,
                performed_by,
                {
                    "newSeriesId": str(creation.series.id),
                    "newClientId": str(client_id) if client_id else "same",
                    "newStaffId": str(staff_id) if staff_id else "same",
                },
            )
            await self._db.flush()

        logger.info("Cloned recurring series", series_id=str(source_id), new_series_id=str(creation.series.id))
        return created

    # -- lifecycle ------------------------------------------------------

    async def cancel_series(self, series_id: UUID, *, performed_by: str | None = None) -> EngineResult[SeriesCancellation]:
        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                if not series.is_active:
                    raise ValidationViolation("This recurring series is already cancelled")
                cancelled = self._cancel(await self._open_appointments(series_id, starting_at=self._clock.now()))
                series.is_active = False
                self._audit(series_id, SeriesAuditAction.CANCELLED, performed_by, {"cancelledAppointments": cancelled})
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info("Cancelled recurring series", series_id=str(series_id), cancelled=cancelled)
        return EngineResult.ok(SeriesCancellation(series=series, cancelled_count=cancelled))

    async def cancel_from_date(
        self,
        series_id: UUID,
        from_date: dt.date,
        *,
        performed_by: str | None = None,
    ) -> EngineResult[SeriesCancellation]:
        """Cancel open occurrences on or after ``from_date``; the series stays active."""

        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                day_start, _ = self._day_bounds(from_date)
                cancelled = self._cancel(await self._open_appointments(series_id, starting_at=day_start))
                self._audit(
                    series_id,
                    SeriesAuditAction.CANCELLED_FROM_DATE,
                    performed_by,
                    {"fromDate": from_date.isoformat(), "cancelledCount": cancelled},
                )
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info("Cancelled series occurrences from date", series_id=str(series_id), from_date=from_date.isoformat())
        return EngineResult.ok(SeriesCancellation(series=series, cancelled_count=cancelled))

    async def pause_series(
        self,
        series_id: UUID,
        *,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> EngineResult[RecurringSeries]:
        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                if not series.is_active:
                    raise ValidationViolation("Cannot pause a cancelled series")
                if series.is_paused:
                    raise ValidationViolation("Series is already paused")
                series.is_paused = True
                series.paused_at = self._clock.now()
                series.pause_reason = reason
                self._audit(series_id, SeriesAuditAction.PAUSED, performed_by, {"reason": reason})
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info("Paused recurring series", series_id=str(series_id))
        return EngineResult.ok(series)

    async def resume_series(self, series_id: UUID, *, performed_by: str | None = None) -> EngineResult[RecurringSeries]:
        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                if not series.is_active:
                    raise ValidationViolation("Cannot resume a cancelled series")
                if not series.is_paused:
                    raise ValidationViolation("Series is not paused")
                series.is_paused = False
                series.paused_at = None
                series.pause_reason = None
                self._audit(series_id, SeriesAuditAction.RESUMED, performed_by)
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info("Resumed recurring series", series_id=str(series_id))
        return EngineResult.ok(series)

    async def extend_series(
        self,
        series_id: UUID,
        additional_months: int,
        *,
        performed_by: str | None = None,
    ) -> EngineResult[SeriesExtension]:
        """Generate further occurrences after the last booked one.

        Days that already hold an appointment of the series are left alone and
        conflicting dates are reported back instead of being booked.
        """

        if additional_months < 1:
            return EngineResult.fail(EngineErrorKind.VALIDATION, "Additional months must be at least 1")

        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                if not series.is_active:
                    raise ValidationViolation("Cannot extend a cancelled series")
                if series.is_paused:
                    raise ValidationViolation("Cannot extend a paused series")
                remaining: int | None = None
                if series.end_type is RecurrenceEndType.AFTER_COUNT and series.end_after_count:
                    remaining = int(series.end_after_count) - int(series.occurrences_created or 0)
                    if remaining <= 0:
                        raise ValidationViolation("Series has reached its occurrence limit")
                today = self._clock.today()
                if series.end_type is RecurrenceEndType.BY_DATE and series.end_by_date and series.end_by_date < today:
                    raise ValidationViolation("Series has passed its end date")

                service = await self._db.get(SalonService, series.service_id)
                if service is None:
                    raise ValidationViolation("Service not found or inactive")
                duration = self._duration(service, series.buffer_minutes)

                last_start = (
                    await self._db.execute(
                        select(func.max(Appointment.start_time)).where(Appointment.series_id == series_id)
                    )
                ).scalar_one_or_none()
                from_day = today
                if last_start is not None:
                    from_day = max(today, self._clock.localize(ensure_utc(last_start)).date())

                config = series.to_config(await self._exception_dates(series_id))
                if config.end_type is RecurrenceEndType.NEVER:
                    config = replace(
                        config,
                        end_type=RecurrenceEndType.BY_DATE,
                        end_by_date=from_day + relativedelta(months=additional_months),
                    )
                elif config.end_type is RecurrenceEndType.AFTER_COUNT:
                    # One extra so the already-booked anchor day does not eat into the remainder
                    config = replace(config, end_after_count=(remaining or 0) + 1)

                anchor = dt.datetime.combine(from_day, dt.time.min, tzinfo=self._clock.timezone)
                candidates = self._generate(config, now=anchor)
                booked_days = await self._booked_days(series_id)
                candidates = [
                    occurrence for occurrence in candidates if occurrence.date() not in booked_days
                ]
                if remaining is not None:
                    candidates = candidates[:remaining]

                report = await self._detect(candidates, series.staff_id, duration)
                appointments = [
                    Appointment(
                        client_id=series.client_id,
                        staff_id=series.staff_id,
                        service_id=series.service_id,
                        start_time=occurrence.astimezone(dt.timezone.utc),
                        end_time=(occurrence + duration).astimezone(dt.timezone.utc),
                        status=AppointmentStatus.SCHEDULED,
                        notes=series.notes,
                        series_id=series.id,
                    )
                    for occurrence in report.available
                ]
                self._db.add_all(appointments)
                series.occurrences_created = int(series.occurrences_created or 0) + len(appointments)
                skipped_dates = [conflict.date for conflict in report.conflicts]
                self._audit(
                    series_id,
                    SeriesAuditAction.EXTENDED,
                    performed_by,
                    {
                        "additionalMonths": additional_months,
                        "appointmentsCreated": len(appointments),
                        "skippedCount": len(skipped_dates),
                    },
                )
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info(
            "Extended recurring series",
            series_id=str(series_id),
            created=len(appointments),
            skipped=len(skipped_dates),
        )
        return EngineResult.ok(
            SeriesExtension(series=series, created_count=len(appointments), skipped_dates=skipped_dates)
        )

    async def _booked_days(self, series_id: UUID) -> set[dt.date]:
        stmt = select(Appointment.start_time).where(Appointment.series_id == series_id)
        return {
            self._clock.localize(ensure_utc(value)).date()
            for value in (await self._db.execute(stmt)).scalars().all()
        }

    # -- exceptions and detachment ---------------------------------------

    async def add_exception(
        self,
        series_id: UUID,
        exception_date: dt.date,
        *,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> EngineResult[RecurringSeriesException]:
        """Exclude one date from the series and cancel its open appointment."""

        try:
            async with with_transaction(self._db):
                series = await self._load_series(series_id)
                if not series.is_active:
                    raise ValidationViolation("Cannot add exception to cancelled series")
                if exception_date in await self._exception_dates(series_id):
                    raise ValidationViolation("Exception date already exists")

                exception = RecurringSeriesException(series_id=series_id, date=exception_date, reason=reason)
                self._db.add(exception)
                day_start, day_end = self._day_bounds(exception_date)
                cancelled = self._cancel(
                    await self._open_appointments(series_id, starting_at=day_start, before=day_end)
                )
                self._audit(
                    series_id,
                    SeriesAuditAction.EXCEPTION_ADDED,
                    performed_by,
                    {"date": exception_date.isoformat(), "reason": reason, "cancelledAppointments": cancelled},
                )
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)
        except IntegrityError:
            return EngineResult.fail(EngineErrorKind.CONSISTENCY, "Exception date already exists")

        logger.info("Added series exception", series_id=str(series_id), date=exception_date.isoformat())
        return EngineResult.ok(exception)

    async def remove_exception(
        self,
        exception_id: UUID,
        *,
        performed_by: str | None = None,
    ) -> EngineResult[RecurringSeriesException]:
        """Drop an exception date; cancelled appointments are not restored."""

        try:
            async with with_transaction(self._db):
                exception = await self._db.get(RecurringSeriesException, exception_id)
                if exception is None:
                    raise ResourceNotFound("Exception not found", exception_id=str(exception_id))
                self._audit(
                    exception.series_id,
                    SeriesAuditAction.EXCEPTION_REMOVED,
                    performed_by,
                    {"date": exception.date.isoformat()},
                )
                await self._db.delete(exception)
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info("Removed series exception", series_id=str(exception.series_id), date=exception.date.isoformat())
        return EngineResult.ok(exception)

    async def detach_occurrence(
        self,
        appointment_id: UUID,
        *,
        performed_by: str | None = None,
    ) -> EngineResult[Appointment]:
        """Mark one appointment as independent so series-wide edits skip it."""

        try:
            async with with_transaction(self._db):
                stmt = lock_for_update(select(Appointment).where(Appointment.id == appointment_id))
                appointment = (await self._db.execute(stmt)).scalar_one_or_none()
                if appointment is None:
                    raise ResourceNotFound("Appointment not found", appointment_id=str(appointment_id))
                if appointment.series_id is None:
                    raise ValidationViolation("Appointment is not part of a series")
                if appointment.is_detached_from_series:
                    raise ValidationViolation("Appointment is already detached from series")
                appointment.is_detached_from_series = True
                self._audit(
                    appointment.series_id,
                    SeriesAuditAction.OCCURRENCE_DETACHED,
                    performed_by,
                    {
                        "appointmentId": str(appointment.id),
                        "date": self._clock.localize(ensure_utc(appointment.start_time)).date().isoformat(),
                    },
                )
                await self._db.flush()
        except EngineFailure as failure:
            return EngineResult.from_failure(failure)

        logger.info("Detached series occurrence", appointment_id=str(appointment_id))
        return EngineResult.ok(appointment)


__all__ = [
    "RecurringSeriesService",
    "SeriesCancellation",
    "SeriesChanges",
    "SeriesCreation",
    "SeriesExtension",
    "SeriesPreview",
    "SeriesRequest",
    "SeriesUpdate",
]
