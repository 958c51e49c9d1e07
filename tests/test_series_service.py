import datetime as dt

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from aesthetech_api.domain.recurrence import (
    ConflictResolution,
    RecurrenceConfig,
    RecurrenceEndType,
    RecurrencePattern,
    ResolutionKind,
    TimeSlot,
)
from aesthetech_api.domain.results import EngineErrorKind
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.appointment import Appointment, AppointmentStatus
from aesthetech_api.models.client import StaffMember
from aesthetech_api.models.recurring_series import (
    RecurringSeriesAuditLog,
    RecurringSeriesException,
    SeriesAuditAction,
)
from aesthetech_api.services.appointments.series_service import RecurringSeriesService, SeriesChanges, SeriesRequest

UTC = dt.timezone.utc
MONDAY = 1
CONFLICT_DAY = dt.date(2026, 3, 9)


def _at(day: int, hour: int, minute: int = 0, month: int = 3) -> dt.datetime:
    return dt.datetime(2026, month, day, hour, minute, tzinfo=UTC)


def _weekly_request(salon, **config_changes) -> SeriesRequest:
    config = dict(
        pattern=RecurrencePattern.WEEKLY,
        start_date=dt.date(2026, 3, 2),
        time_of_day="10:00",
        day_of_week=MONDAY,
        end_type=RecurrenceEndType.AFTER_COUNT,
        end_after_count=4,
    )
    config.update(config_changes)
    return SeriesRequest(
        client_id=salon.client_id,
        staff_id=salon.staff_id,
        service_id=salon.service_id,
        config=RecurrenceConfig(**config),
    )


def _service(session, fixed_now) -> RecurringSeriesService:
    return RecurringSeriesService(session, SettingsSnapshot(), now=lambda: fixed_now)


async def _series_appointments(session, series_id) -> list[Appointment]:
    stmt = select(Appointment).where(Appointment.series_id == series_id).order_by(Appointment.start_time)
    return list((await session.execute(stmt)).scalars().all())


async def _audit_actions(session, series_id) -> list[SeriesAuditAction]:
    stmt = select(RecurringSeriesAuditLog.action).where(RecurringSeriesAuditLog.series_id == series_id)
    return sorted((await session.execute(stmt)).scalars().all(), key=lambda action: action.value)


@pytest_asyncio.fixture
async def booked_conflict(session_factory, salon):
    """Another client already holds Sam's 10:00 slot on 9 March."""

    async with session_factory() as session:
        session.add(
            Appointment(
                client_id=salon.other_client_id,
                staff_id=salon.staff_id,
                service_id=salon.service_id,
                start_time=_at(9, 10),
                end_time=_at(9, 11),
            )
        )
        await session.commit()


@pytest.mark.asyncio
async def test_preview_reports_conflicts_with_alternatives(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        preview = (await _service(session, fixed_now).preview(_weekly_request(salon))).unwrap()

        assert preview.summary == "Weekly at 10:00 AM on Mondays, 4 occurrences"
        assert preview.duration == dt.timedelta(minutes=60)
        assert preview.estimated_total == 4
        assert [value.date() for value in preview.next_dates] == [
            dt.date(2026, 3, 2),
            CONFLICT_DAY,
            dt.date(2026, 3, 16),
            dt.date(2026, 3, 23),
        ]
        assert [value.date() for value in preview.occurrences] == [
            dt.date(2026, 3, 2),
            CONFLICT_DAY,
            dt.date(2026, 3, 16),
            dt.date(2026, 3, 23),
        ]
        (conflict,) = preview.report.conflicts
        assert conflict.date == CONFLICT_DAY
        assert [slot.start.astimezone(UTC) for slot in conflict.alternatives] == [
            _at(9, 11),
            _at(9, 9),
            _at(9, 11, 30),
            _at(9, 12),
        ]
        assert (await session.execute(select(RecurringSeriesAuditLog))).first() is None


@pytest.mark.asyncio
async def test_create_refuses_unresolved_conflicts(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        result = await _service(session, fixed_now).create_series(_weekly_request(salon))

        assert result.error.kind is EngineErrorKind.VALIDATION
        assert result.error.details["unresolved_dates"] == ["2026-03-09"]
        booked = (await session.execute(select(Appointment))).scalars().all()
        assert len(booked) == 1


@pytest.mark.asyncio
async def test_create_with_accepted_alternative(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        preview = (await service.preview(_weekly_request(salon))).unwrap()
        alternative = preview.report.conflicts[0].alternatives[0]

        created = (
            await service.create_series(
                _weekly_request(salon),
                {CONFLICT_DAY: ConflictResolution(kind=ResolutionKind.ACCEPT_ALTERNATIVE, alternative=alternative)},
                performed_by="front-desk",
            )
        ).unwrap()

        assert created.created_count == 4
        assert created.alternatives_used == 1
        assert created.series.occurrences_created == 4
        starts = [appointment.start_time for appointment in await _series_appointments(session, created.series.id)]
        assert [value.replace(tzinfo=UTC) for value in starts] == [_at(2, 10), _at(9, 11), _at(16, 10), _at(23, 10)]
        assert await _audit_actions(session, created.series.id) == [SeriesAuditAction.CREATED]


@pytest.mark.asyncio
async def test_create_with_skip_records_exception(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        created = (
            await _service(session, fixed_now).create_series(
                _weekly_request(salon),
                {CONFLICT_DAY: ConflictResolution(kind=ResolutionKind.SKIP)},
            )
        ).unwrap()

        assert created.created_count == 3
        assert created.skipped_dates == [CONFLICT_DAY]
        exceptions = (await session.execute(select(RecurringSeriesException))).scalars().all()
        assert [(row.date, row.reason) for row in exceptions] == [(CONFLICT_DAY, "Skipped due to conflict")]


@pytest.mark.asyncio
async def test_create_rejects_invalid_pattern(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        result = await _service(session, fixed_now).create_series(_weekly_request(salon, day_of_week=None))
    assert result.error.message == "Day of week (0-6) is required"


@pytest.mark.asyncio
async def test_cancel_series_skips_detached_occurrences(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        created = (await service.create_series(_weekly_request(salon))).unwrap()
        series_id = created.series.id
        detached = created.appointments[-1]

        (await service.detach_occurrence(detached.id, performed_by="front-desk")).unwrap()
        again = await service.detach_occurrence(detached.id)
        assert again.error.message == "Appointment is already detached from series"

        cancelled = (await service.cancel_series(series_id)).unwrap()
        assert cancelled.cancelled_count == 3
        assert cancelled.series.is_active is False

        statuses = [appointment.status for appointment in await _series_appointments(session, series_id)]
        assert statuses == [AppointmentStatus.CANCELLED] * 3 + [AppointmentStatus.SCHEDULED]

        twice = await service.cancel_series(series_id)
        assert twice.error.message == "This recurring series is already cancelled"
        assert (await service.pause_series(series_id)).error.message == "Cannot pause a cancelled series"
        assert await _audit_actions(session, series_id) == [
            SeriesAuditAction.CANCELLED,
            SeriesAuditAction.CREATED,
            SeriesAuditAction.OCCURRENCE_DETACHED,
        ]


@pytest.mark.asyncio
async def test_cancel_from_date_keeps_series_active(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        series_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id

        outcome = (await service.cancel_from_date(series_id, dt.date(2026, 3, 16))).unwrap()

        assert outcome.cancelled_count == 2
        assert outcome.series.is_active is True
        statuses = [appointment.status for appointment in await _series_appointments(session, series_id)]
        assert statuses == [AppointmentStatus.SCHEDULED] * 2 + [AppointmentStatus.CANCELLED] * 2


@pytest.mark.asyncio
async def test_pause_and_resume(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        series_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id

        paused = (await service.pause_series(series_id, reason="Client travelling")).unwrap()
        assert paused.is_paused
        assert paused.pause_reason == "Client travelling"
        assert (await service.pause_series(series_id)).error.message == "Series is already paused"
        assert (await service.extend_series(series_id, 1)).error.message == "Cannot extend a paused series"

        resumed = (await service.resume_series(series_id)).unwrap()
        assert not resumed.is_paused
        assert resumed.pause_reason is None
        assert (await service.resume_series(series_id)).error.message == "Series is not paused"


@pytest.mark.asyncio
async def test_extend_never_ending_series_by_a_month(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        request = _weekly_request(salon, end_type=RecurrenceEndType.NEVER, end_after_count=None)
        created = (await service.create_series(request)).unwrap()
        assert created.created_count == 14

        extension = (await service.extend_series(created.series.id, 1)).unwrap()

        assert extension.created_count == 4
        assert extension.skipped_dates == []
        assert extension.series.occurrences_created == 18
        appointments = await _series_appointments(session, created.series.id)
        assert appointments[-1].start_time.replace(tzinfo=UTC) == _at(29, 10, month=6)


@pytest.mark.asyncio
async def test_extend_respects_remaining_count(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        created = (
            await service.create_series(
                _weekly_request(salon),
                {CONFLICT_DAY: ConflictResolution(kind=ResolutionKind.SKIP)},
            )
        ).unwrap()
        assert created.series.occurrences_created == 3

        extension = (await service.extend_series(created.series.id, 1)).unwrap()
        assert extension.created_count == 1
        appointments = await _series_appointments(session, created.series.id)
        assert appointments[-1].start_time.replace(tzinfo=UTC) == _at(30, 10)

        exhausted = await service.extend_series(created.series.id, 1)
        assert exhausted.error.message == "Series has reached its occurrence limit"
        assert (await service.extend_series(created.series.id, 0)).error.kind is EngineErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_exceptions_cancel_the_day_and_can_be_removed(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        series_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id

        exception = (await service.add_exception(series_id, dt.date(2026, 3, 16), reason="Holiday")).unwrap()
        duplicate = await service.add_exception(series_id, dt.date(2026, 3, 16))
        assert duplicate.error.message == "Exception date already exists"

        statuses = [appointment.status for appointment in await _series_appointments(session, series_id)]
        assert statuses[2] is AppointmentStatus.CANCELLED
        assert statuses.count(AppointmentStatus.CANCELLED) == 1

        (await service.remove_exception(exception.id)).unwrap()
        assert (await session.execute(select(RecurringSeriesException))).first() is None
        statuses = [appointment.status for appointment in await _series_appointments(session, series_id)]
        assert statuses[2] is AppointmentStatus.CANCELLED

        missing = await service.remove_exception(exception.id)
        assert missing.error.kind is EngineErrorKind.NOT_FOUND
        assert await _audit_actions(session, series_id) == [
            SeriesAuditAction.CREATED,
            SeriesAuditAction.EXCEPTION_ADDED,
            SeriesAuditAction.EXCEPTION_REMOVED,
        ]


@pytest.mark.asyncio
async def test_detach_requires_series_appointment(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        standalone = (await session.execute(select(Appointment))).scalar_one()
        result = await _service(session, fixed_now).detach_occurrence(standalone.id)
    assert result.error.message == "Appointment is not part of a series"


@pytest.mark.asyncio
async def test_create_rejects_alternatives_that_were_not_offered(session_factory, salon, booked_conflict, fixed_now) -> None:
    async with session_factory() as session:
        busy = StaffMember(first_name="Busy", last_name="Barber")
        session.add(busy)
        await session.flush()
        busy_id = busy.id
        session.add(
            Appointment(
                client_id=salon.other_client_id,
                staff_id=busy_id,
                service_id=salon.service_id,
                start_time=_at(9, 11),
                end_time=_at(9, 12),
            )
        )
        await session.commit()
        service = _service(session, fixed_now)

        def _accept(slot: TimeSlot) -> dict[dt.date, ConflictResolution]:
            return {CONFLICT_DAY: ConflictResolution(kind=ResolutionKind.ACCEPT_ALTERNATIVE, alternative=slot)}

        other_staff = await service.create_series(
            _weekly_request(salon), _accept(TimeSlot(start=_at(9, 11), end=_at(9, 12), staff_id=busy_id))
        )
        assert other_staff.error.kind is EngineErrorKind.VALIDATION
        assert other_staff.error.message == "Alternative must be with the series staff member"

        too_short = await service.create_series(
            _weekly_request(salon), _accept(TimeSlot(start=_at(9, 11), end=_at(9, 11, 30), staff_id=salon.staff_id))
        )
        assert too_short.error.message == "Alternative must match the appointment duration"

        not_offered = await service.create_series(
            _weekly_request(salon), _accept(TimeSlot(start=_at(9, 15), end=_at(9, 16), staff_id=salon.staff_id))
        )
        assert not_offered.error.message == "Alternative was not offered for this date"
        assert not_offered.error.details["date"] == "2026-03-09"

        busy_bookings = (
            await session.execute(select(func.count(Appointment.id)).where(Appointment.staff_id == busy_id))
        ).scalar_one()
        assert busy_bookings == 1
        assert (await session.execute(select(RecurringSeriesAuditLog))).first() is None


@pytest.mark.asyncio
async def test_update_moves_future_appointments_and_reports_conflicts(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        created = (await service.create_series(_weekly_request(salon))).unwrap()
        series_id = created.series.id
        (await service.detach_occurrence(created.appointments[2].id)).unwrap()
        session.add(
            Appointment(
                client_id=salon.other_client_id,
                staff_id=salon.staff_id,
                service_id=salon.service_id,
                start_time=_at(9, 14),
                end_time=_at(9, 15),
            )
        )
        await session.commit()

        update = (
            await service.update_series(
                series_id,
                SeriesChanges(time_of_day="14:00", notes="Bring reference photos"),
                performed_by="front-desk",
            )
        ).unwrap()

        assert update.series.time_of_day == "14:00"
        assert update.series.notes == "Bring reference photos"
        assert update.skipped_dates == [CONFLICT_DAY]
        assert update.updated_count == 3
        assert set(update.changes) == {"timeOfDay", "notes"}

        appointments = await _series_appointments(session, series_id)
        assert [appointment.start_time.replace(tzinfo=UTC) for appointment in appointments] == [
            _at(2, 14),
            _at(9, 10),
            _at(16, 10),
            _at(23, 14),
        ]
        assert appointments[-1].end_time.replace(tzinfo=UTC) == _at(23, 15)
        assert [appointment.notes for appointment in appointments] == [
            "Bring reference photos",
            "Bring reference photos",
            None,
            "Bring reference photos",
        ]
        assert await _audit_actions(session, series_id) == [
            SeriesAuditAction.APPOINTMENTS_UPDATED,
            SeriesAuditAction.CREATED,
            SeriesAuditAction.OCCURRENCE_DETACHED,
            SeriesAuditAction.UPDATED,
        ]


@pytest.mark.asyncio
async def test_update_reassigns_staff_and_extends_buffer(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        alex = StaffMember(first_name="Alex", last_name="Colourist")
        session.add(alex)
        await session.flush()
        alex_id = alex.id
        session.add(
            Appointment(
                client_id=salon.other_client_id,
                staff_id=alex_id,
                service_id=salon.service_id,
                start_time=_at(16, 10, 30),
                end_time=_at(16, 11, 30),
            )
        )
        await session.commit()

        service = _service(session, fixed_now)
        series_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id
        update = (
            await service.update_series(series_id, SeriesChanges(staff_id=alex_id, buffer_minutes=15))
        ).unwrap()

        assert update.skipped_dates == [dt.date(2026, 3, 16)]
        assert update.updated_count == 3
        assert update.series.staff_id == alex_id
        assert update.series.buffer_minutes == 15
        appointments = await _series_appointments(session, series_id)
        assert [appointment.staff_id for appointment in appointments] == [
            alex_id,
            alex_id,
            salon.staff_id,
            alex_id,
        ]
        assert appointments[0].end_time.replace(tzinfo=UTC) == _at(2, 11, 15)
        assert appointments[2].end_time.replace(tzinfo=UTC) == _at(16, 11)

        unchanged = (await service.update_series(series_id, SeriesChanges(staff_id=alex_id))).unwrap()
        assert unchanged.changes == {}
        assert unchanged.updated_count == 0


@pytest.mark.asyncio
async def test_update_validates_changes(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        series_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id

        bad_time = await service.update_series(series_id, SeriesChanges(time_of_day="25:00"))
        assert bad_time.error.kind is EngineErrorKind.VALIDATION
        assert bad_time.error.message == "Time must be in HH:MM format"
        negative = await service.update_series(series_id, SeriesChanges(buffer_minutes=-5))
        assert negative.error.message == "Buffer minutes cannot be negative"
        ghost = await service.update_series(series_id, SeriesChanges(staff_id=salon.client_id))
        assert ghost.error.message == "Staff member not found or inactive"

        (await service.cancel_series(series_id)).unwrap()
        cancelled = await service.update_series(series_id, SeriesChanges(notes="late"))
        assert cancelled.error.message == "Cannot update cancelled series"
        missing = await service.update_series(salon.client_id, SeriesChanges(notes="late"))
        assert missing.error.kind is EngineErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_clone_series_for_another_client(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        source_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id

        same_slot = await service.clone_series(source_id)
        assert same_slot.error.kind is EngineErrorKind.VALIDATION
        assert same_slot.error.details["unresolved_dates"] == [
            "2026-03-02",
            "2026-03-09",
            "2026-03-16",
            "2026-03-23",
        ]

        clone = (
            await service.clone_series(
                source_id,
                client_id=salon.other_client_id,
                time_of_day="15:00",
                performed_by="front-desk",
            )
        ).unwrap()

        assert clone.series.id != source_id
        assert clone.series.client_id == salon.other_client_id
        assert clone.series.start_date == dt.date(2026, 3, 2)
        assert clone.created_count == 4
        assert [appointment.start_time.astimezone(UTC) for appointment in clone.appointments] == [
            _at(2, 15),
            _at(9, 15),
            _at(16, 15),
            _at(23, 15),
        ]
        assert SeriesAuditAction.CLONED in await _audit_actions(session, source_id)

        missing = await service.clone_series(salon.client_id)
        assert missing.error.kind is EngineErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_list_get_and_exception_reads(session_factory, salon, fixed_now) -> None:
    async with session_factory() as session:
        service = _service(session, fixed_now)
        series_id = (await service.create_series(_weekly_request(salon))).unwrap().series.id
        (await service.add_exception(series_id, dt.date(2026, 3, 23))).unwrap()
        (await service.add_exception(series_id, dt.date(2026, 3, 9), reason="Training")).unwrap()

        assert [series.id for series in await service.list_series(client_id=salon.client_id)] == [series_id]
        assert await service.list_series(client_id=salon.other_client_id) == []
        (await service.pause_series(series_id)).unwrap()
        assert await service.list_series(include_paused=False) == []
        assert [series.id for series in await service.list_series(staff_id=salon.staff_id)] == [series_id]

        detail = (await service.get_series(series_id)).unwrap()
        assert len(detail.appointments) == 4
        assert [exception.date for exception in detail.exceptions] == [dt.date(2026, 3, 9), dt.date(2026, 3, 23)]

        exceptions = (await service.list_exceptions(series_id)).unwrap()
        assert [(exception.date, exception.reason) for exception in exceptions] == [
            (dt.date(2026, 3, 9), "Training"),
            (dt.date(2026, 3, 23), None),
        ]

        (await service.cancel_series(series_id)).unwrap()
        assert await service.list_series() == []
        assert [series.id for series in await service.list_series(active_only=False)] == [series_id]
        assert (await service.get_series(salon.client_id)).error.kind is EngineErrorKind.NOT_FOUND
        assert (await service.list_exceptions(salon.client_id)).error.kind is EngineErrorKind.NOT_FOUND
