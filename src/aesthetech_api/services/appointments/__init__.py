"""Appointment availability and recurring series services."""

from .availability import AvailabilityService
from .series_service import RecurringSeriesService, SeriesChanges, SeriesCreation, SeriesRequest

__all__ = ["AvailabilityService", "RecurringSeriesService", "SeriesChanges", "SeriesCreation", "SeriesRequest"]
