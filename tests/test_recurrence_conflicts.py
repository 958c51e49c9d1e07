import datetime as dt
from uuid import uuid4

import pytest

from aesthetech_api.domain.recurrence import (
    ConflictResolution,
    ResolutionKind,
    TimeSlot,
    detect_conflicts,
    resolve_conflicts,
)
from aesthetech_api.domain.recurrence.conflicts import CONFLICT_REASON
from aesthetech_api.domain.results import EngineErrorKind
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.models.appointment import Appointment, AppointmentStatus
from aesthetech_api.services.appointments.availability import AvailabilityService

UTC = dt.timezone.utc
HOUR = dt.timedelta(hours=1)
STAFF_ID = uuid4()


def _at(day: int, hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime(2026, 3, day, hour, minute, tzinfo=UTC)


class FakeCalendar:
    def __init__(self, busy: set[dt.datetime]) -> None:
        self.busy = busy
        self.alternative_requests: list[dt.datetime] = []

    async def has_overlap(self, staff_id, start, end) -> bool:
        return start in self.busy

    async def find_alternatives(self, staff_id, occurrence, duration):
        self.alternative_requests.append(occurrence)
        later = occurrence + HOUR
        return [TimeSlot(start=later, end=later + duration, staff_id=staff_id, staff_name="Sam Stylist")]


@pytest.mark.asyncio
async def test_detect_conflicts_partitions_occurrences() -> None:
    occurrences = [_at(2, 10), _at(9, 10), _at(16, 10)]
    calendar = FakeCalendar(busy={_at(9, 10)})

    report = await detect_conflicts(
        occurrences,
        STAFF_ID,
        duration=HOUR,
        has_overlap=calendar.has_overlap,
        find_alternatives=calendar.find_alternatives,
    )

    assert report.total == 3
    assert report.available == [_at(2, 10), _at(16, 10)]
    assert report.has_conflicts
    (conflict,) = report.conflicts
    assert conflict.date == dt.date(2026, 3, 9)
    assert conflict.reason == CONFLICT_REASON
    assert conflict.alternatives[0].start == _at(9, 11)
    assert calendar.alternative_requests == [_at(9, 10)]


@pytest.mark.asyncio
async def test_resolution_requires_every_conflict_to_be_decided() -> None:
    calendar = FakeCalendar(busy={_at(9, 10), _at(16, 10)})
    report = await detect_conflicts(
        [_at(2, 10), _at(9, 10), _at(16, 10)],
        STAFF_ID,
        duration=HOUR,
        has_overlap=calendar.has_overlap,
        find_alternatives=calendar.find_alternatives,
    )

    missing = resolve_conflicts(
        report,
        {dt.date(2026, 3, 9): ConflictResolution(kind=ResolutionKind.SKIP)},
        staff_id=STAFF_ID,
        duration=HOUR,
    )
    assert missing.error.kind is EngineErrorKind.VALIDATION
    assert missing.error.details["unresolved_dates"] == ["2026-03-16"]

    alternative = report.conflicts[1].alternatives[0]
    plan = resolve_conflicts(
        report,
        {
            dt.date(2026, 3, 9): ConflictResolution(kind=ResolutionKind.SKIP),
            dt.date(2026, 3, 16): ConflictResolution(kind=ResolutionKind.ACCEPT_ALTERNATIVE, alternative=alternative),
        },
        staff_id=STAFF_ID,
        duration=HOUR,
    ).unwrap()

    assert [item.slot.start for item in plan.planned] == [_at(2, 10), _at(16, 11)]
    assert [item.from_alternative for item in plan.planned] == [False, True]
    assert plan.skipped_dates == [dt.date(2026, 3, 9)]


@pytest.mark.asyncio
async def test_accepting_without_a_slot_fails() -> None:
    calendar = FakeCalendar(busy={_at(2, 10)})
    report = await detect_conflicts(
        [_at(2, 10)],
        STAFF_ID,
        duration=HOUR,
        has_overlap=calendar.has_overlap,
        find_alternatives=calendar.find_alternatives,
    )

    result = resolve_conflicts(
        report,
        {dt.date(2026, 3, 2): ConflictResolution(kind=ResolutionKind.ACCEPT_ALTERNATIVE)},
        staff_id=STAFF_ID,
        duration=HOUR,
    )
    assert result.error.message == "Accepted alternative is missing its time slot"


@pytest.mark.asyncio
async def test_availability_uses_half_open_intervals_and_business_hours(session_factory, salon) -> None:
    async with session_factory() as session:
        session.add_all(
            [
                Appointment(
                    client_id=salon.client_id,
                    staff_id=salon.staff_id,
                    service_id=salon.service_id,
                    start_time=_at(2, 10),
                    end_time=_at(2, 11),
                ),
                Appointment(
                    client_id=salon.other_client_id,
                    staff_id=salon.staff_id,
                    service_id=salon.service_id,
                    start_time=_at(2, 14),
                    end_time=_at(2, 15),
                    status=AppointmentStatus.CANCELLED,
                ),
            ]
        )
        await session.commit()

        availability = AvailabilityService(
            session,
            SettingsSnapshot(),
            offsets_minutes=[30, 60, 90, 120],
            max_alternatives=4,
        )

        assert await availability.has_overlap(salon.staff_id, _at(2, 10, 30), _at(2, 11, 30))
        assert not await availability.has_overlap(salon.staff_id, _at(2, 11), _at(2, 12))
        assert not await availability.has_overlap(salon.staff_id, _at(2, 9), _at(2, 10))
        assert not await availability.has_overlap(salon.staff_id, _at(2, 14), _at(2, 15))

        slots = await availability.find_alternatives(salon.staff_id, _at(2, 10), HOUR)

        assert [slot.start for slot in slots] == [_at(2, 11), _at(2, 9), _at(2, 11, 30), _at(2, 12)]
        assert {slot.staff_name for slot in slots} == {"Sam Stylist"}

        none_wanted = AvailabilityService(session, SettingsSnapshot(), max_alternatives=0)
        assert await none_wanted.find_alternatives(salon.staff_id, _at(2, 10), HOUR) == []

        no_offsets = AvailabilityService(session, SettingsSnapshot(), offsets_minutes=[])
        assert await no_offsets.find_alternatives(salon.staff_id, _at(2, 10), HOUR) == []
