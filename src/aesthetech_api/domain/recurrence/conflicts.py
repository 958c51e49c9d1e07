"""Double-booking detection and per-date resolution for generated occurrences."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Mapping, Sequence
from uuid import UUID

from aesthetech_api.domain.results import EngineErrorKind, EngineResult

CONFLICT_REASON = "Time slot already booked"


@dataclass(frozen=True)
class TimeSlot:
    start: dt.datetime
    end: dt.datetime
    staff_id: UUID
    staff_name: str | None = None

    def overlaps(self, other_start: dt.datetime, other_end: dt.datetime) -> bool:
        return self.start < other_end and other_start < self.end


@dataclass(frozen=True)
class Conflict:
    occurrence: dt.datetime
    reason: str
    alternatives: tuple[TimeSlot, ...] = ()

    @property
    def date(self) -> dt.date:
        return self.occurrence.date()


@dataclass(frozen=True)
class ConflictReport:
    total: int
    available: list[dt.datetime]
    conflicts: list[Conflict]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


class ResolutionKind(str, Enum):
    ACCEPT_ALTERNATIVE = "ACCEPT_ALTERNATIVE"
    SKIP = "SKIP"


@dataclass(frozen=True)
class ConflictResolution:
    kind: ResolutionKind
    alternative: TimeSlot | None = None


@dataclass(frozen=True)
class PlannedOccurrence:
    occurrence_date: dt.date
    slot: TimeSlot
    from_alternative: bool = False


@dataclass(frozen=True)
class ResolutionPlan:
    planned: list[PlannedOccurrence]
    skipped_dates: list[dt.date] = field(default_factory=list)


OverlapLookup = Callable[[UUID, dt.datetime, dt.datetime], Awaitable[bool]]
AlternativesLookup = Callable[[UUID, dt.datetime, dt.timedelta], Awaitable[Sequence[TimeSlot]]]


async def detect_conflicts(
    occurrences: Sequence[dt.datetime],
    staff_id: UUID,
    *,
    duration: dt.timedelta,
    has_overlap: OverlapLookup,
    find_alternatives: AlternativesLookup,
) -> ConflictReport:
    """Check each occurrence against the staff member's existing bookings."""

    available: list[dt.datetime] = []
    conflicts: list[Conflict] = []
    for occurrence in occurrences:
        if await has_overlap(staff_id, occurrence, occurrence + duration):
            alternatives = await find_alternatives(staff_id, occurrence, duration)
            conflicts.append(
                Conflict(occurrence=occurrence, reason=CONFLICT_REASON, alternatives=tuple(alternatives))
            )
        else:
            available.append(occurrence)
    return ConflictReport(total=len(occurrences), available=available, conflicts=conflicts)


def _offered_slot(
    alternative: TimeSlot,
    offered: Sequence[TimeSlot],
    staff_id: UUID,
    duration: dt.timedelta,
) -> EngineResult[TimeSlot]:
    """Accept only a slot that was suggested for the same conflicting date."""

    if alternative.staff_id != staff_id:
        return EngineResult.fail(EngineErrorKind.VALIDATION, "Alternative must be with the series staff member")
    if alternative.end - alternative.start != duration:
        return EngineResult.fail(EngineErrorKind.VALIDATION, "Alternative must match the appointment duration")
    for slot in offered:
        if slot.start == alternative.start and slot.end == alternative.end and slot.staff_id == alternative.staff_id:
            return EngineResult.ok(slot)
    return EngineResult.fail(EngineErrorKind.VALIDATION, "Alternative was not offered for this date")


def resolve_conflicts(
    report: ConflictReport,
    resolutions: Mapping[dt.date, ConflictResolution],
    *,
    staff_id: UUID,
    duration: dt.timedelta,
) -> EngineResult[ResolutionPlan]:
    """Merge free occurrences with caller decisions; any unresolved conflict fails.

    A resolution may also be given for a free date, e.g. to skip it. An
    accepted alternative must be one of the slots offered for that date.
    """

    unresolved = [conflict.date for conflict in report.conflicts if conflict.date not in resolutions]
    if unresolved:
        return EngineResult.fail(
            EngineErrorKind.VALIDATION,
            "Every conflicting date needs a resolution before the series can be created",
            unresolved_dates=[value.isoformat() for value in unresolved],
        )

    decisions: list[tuple[dt.date, ConflictResolution | None, dt.datetime]] = [
        (occurrence.date(), resolutions.get(occurrence.date()), occurrence) for occurrence in report.available
    ]
    decisions.extend((conflict.date, resolutions[conflict.date], conflict.occurrence) for conflict in report.conflicts)

    offered = {conflict.date: conflict.alternatives for conflict in report.conflicts}
    planned: list[PlannedOccurrence] = []
    skipped: list[dt.date] = []
    for occurrence_date, resolution, occurrence in decisions:
        if resolution is None:
            planned.append(
                PlannedOccurrence(
                    occurrence_date=occurrence_date,
                    slot=TimeSlot(start=occurrence, end=occurrence + duration, staff_id=staff_id),
                )
            )
            continue
        if resolution.kind is ResolutionKind.SKIP:
            skipped.append(occurrence_date)
            continue
        if resolution.alternative is None:
            return EngineResult.fail(
                EngineErrorKind.VALIDATION,
                "Accepted alternative is missing its time slot",
                date=occurrence_date.isoformat(),
            )
        checked = _offered_slot(resolution.alternative, offered.get(occurrence_date, ()), staff_id, duration)
        if not checked.success:
            return EngineResult.fail(
                EngineErrorKind.VALIDATION,
                checked.error.message,
                date=occurrence_date.isoformat(),
            )
        planned.append(
            PlannedOccurrence(occurrence_date=occurrence_date, slot=checked.unwrap(), from_alternative=True)
        )

    planned.sort(key=lambda item: item.slot.start)
    return EngineResult.ok(ResolutionPlan(planned=planned, skipped_dates=sorted(skipped)))


__all__ = [
    "CONFLICT_REASON",
    "Conflict",
    "ConflictReport",
    "ConflictResolution",
    "PlannedOccurrence",
    "ResolutionKind",
    "ResolutionPlan",
    "TimeSlot",
    "detect_conflicts",
    "resolve_conflicts",
]
