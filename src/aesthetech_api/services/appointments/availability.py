"""Staff calendar lookups: overlap checks and nearby alternative slots."""

from __future__ import annotations

import datetime as dt
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.core.clock import ensure_utc
from aesthetech_api.core.settings import settings as app_settings
from aesthetech_api.domain.recurrence.conflicts import TimeSlot
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.appointment import NON_BLOCKING_STATUSES, Appointment
from aesthetech_api.models.client import StaffMember


def _to_utc(value: dt.datetime) -> dt.datetime:
    return value.astimezone(dt.timezone.utc)


class AvailabilityService:
    """Answers "is this staff member free" against persisted appointments.

    Intervals are half-open: a booking ending at 10:00 does not block one
    starting at 10:00. Cancelled and no-show appointments never block.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        settings: SettingsSnapshot,
        *,
        offsets_minutes: Sequence[int] | None = None,
        max_alternatives: int | None = None,
    ) -> None:
        self._db = db_session
        self._settings = settings
        self._offsets = list(
            app_settings.recurrence_alternative_offsets_minutes if offsets_minutes is None else offsets_minutes
        )
        self._max_alternatives = (
            app_settings.recurrence_max_alternatives if max_alternatives is None else max_alternatives
        )
        self._staff_names: dict[UUID, str | None] = {}

    async def has_overlap(
        self,
        staff_id: UUID,
        start: dt.datetime,
        end: dt.datetime,
        *,
        exclude_appointment_id: UUID | None = None,
    ) -> bool:
        stmt = (
            select(Appointment.id)
            .where(
                Appointment.staff_id == staff_id,
                Appointment.status.not_in(NON_BLOCKING_STATUSES),
                Appointment.start_time < _to_utc(end),
                Appointment.end_time > _to_utc(start),
            )
            .limit(1)
        )
        if exclude_appointment_id is not None:
            stmt = stmt.where(Appointment.id != exclude_appointment_id)
        result = await self._db.execute(stmt)
        return result.first() is not None

    async def bookings_between(
        self,
        staff_id: UUID,
        start: dt.datetime,
        end: dt.datetime,
    ) -> list[tuple[dt.datetime, dt.datetime]]:
        stmt = (
            select(Appointment.start_time, Appointment.end_time)
            .where(
                Appointment.staff_id == staff_id,
                Appointment.status.not_in(NON_BLOCKING_STATUSES),
                Appointment.start_time < _to_utc(end),
                Appointment.end_time > _to_utc(start),
            )
            .order_by(Appointment.start_time)
        )
        result = await self._db.execute(stmt)
        return [(ensure_utc(row.start_time), ensure_utc(row.end_time)) for row in result]

    async def _staff_name(self, staff_id: UUID) -> str | None:
        if staff_id not in self._staff_names:
            staff = await self._db.get(StaffMember, staff_id)
            self._staff_names[staff_id] = staff.full_name if staff is not None else None
        return self._staff_names[staff_id]

    def _candidate_starts(self, occurrence: dt.datetime) -> list[dt.datetime]:
        candidates: list[dt.datetime] = []
        for offset in self._offsets:
            for sign in (1, -1):
                candidates.append(occurrence + dt.timedelta(minutes=sign * offset))
        return candidates

    def _within_business_hours(self, start: dt.datetime, end: dt.datetime, day: dt.date) -> bool:
        zone = self._settings.zone
        local_start = start.astimezone(zone)
        local_end = end.astimezone(zone)
        if local_start.date() != day or local_end.date() != day:
            return False
        return (
            local_start.time() >= self._settings.opening_time
            and local_end.time() <= self._settings.closing_time
        )

    async def find_alternatives(
        self,
        staff_id: UUID,
        occurrence: dt.datetime,
        duration: dt.timedelta,
    ) -> list[TimeSlot]:
        """Same-day slots at widening offsets around a taken occurrence."""

        zone = self._settings.zone
        day = occurrence.astimezone(zone).date()
        day_start = dt.datetime.combine(day, dt.time.min, tzinfo=zone)
        bookings = await self.bookings_between(staff_id, day_start, day_start + dt.timedelta(days=1))
        staff_name = await self._staff_name(staff_id)

        slots: list[TimeSlot] = []
        for start in self._candidate_starts(occurrence):
            if len(slots) >= self._max_alternatives:
                break
            end = start + duration
            if not self._within_business_hours(start, end, day):
                continue
            if any(_to_utc(start) < booked_end and booked_start < _to_utc(end) for booked_start, booked_end in bookings):
                continue
            slots.append(TimeSlot(start=start, end=end, staff_id=staff_id, staff_name=staff_name))
        return slots


__all__ = ["AvailabilityService"]
