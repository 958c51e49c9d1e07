from .conflicts import (
    Conflict,
    ConflictReport,
    ConflictResolution,
    PlannedOccurrence,
    ResolutionKind,
    ResolutionPlan,
    TimeSlot,
    detect_conflicts,
    resolve_conflicts,
)
from .generator import (
    estimate_occurrences,
    generate_occurrences,
    get_nth_weekday_of_month,
    preview_dates,
)
from .patterns import (
    RecurrenceConfig,
    RecurrenceEndType,
    RecurrencePattern,
    format_recurrence_summary,
    pattern_label,
    validate_recurrence_config,
)

__all__ = [
    "Conflict",
    "ConflictReport",
    "ConflictResolution",
    "PlannedOccurrence",
    "RecurrenceConfig",
    "RecurrenceEndType",
    "RecurrencePattern",
    "ResolutionKind",
    "ResolutionPlan",
    "TimeSlot",
    "detect_conflicts",
    "estimate_occurrences",
    "format_recurrence_summary",
    "generate_occurrences",
    "get_nth_weekday_of_month",
    "pattern_label",
    "preview_dates",
    "resolve_conflicts",
    "validate_recurrence_config",
]
