"""Recurring appointment templates, their exception dates and audit trail."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Iterable
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from aesthetech_api.core.clock import utcnow
from aesthetech_api.db.base import Base
from aesthetech_api.domain.recurrence.patterns import RecurrenceConfig, RecurrenceEndType, RecurrencePattern


class SeriesAuditAction(str, Enum):
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    EXTENDED = "EXTENDED"
    EXCEPTION_ADDED = "EXCEPTION_ADDED"
    EXCEPTION_REMOVED = "EXCEPTION_REMOVED"
    OCCURRENCE_DETACHED = "OCCURRENCE_DETACHED"
    CANCELLED_FROM_DATE = "CANCELLED_FROM_DATE"
    UPDATED = "UPDATED"
    APPOINTMENTS_UPDATED = "APPOINTMENTS_UPDATED"
    CLONED = "CLONED"


class RecurringSeries(Base):
    """Template for repeating appointments; appointments are the materialized copies."""

    __tablename__ = "recurring_series"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    staff_id = Column(UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=False)
    service_id = Column(UUID(as_uuid=True), ForeignKey("salon_services.id"), nullable=False)
    pattern = Column(SqlEnum(RecurrencePattern, name="recurrence_pattern"), nullable=False)
    start_date = Column(Date, nullable=False)
    time_of_day = Column(String(5), nullable=False)
    day_of_week = Column(Integer, nullable=True)
    custom_weeks = Column(Integer, nullable=True)
    specific_days = Column(JSON, nullable=False, default=list)
    nth_week = Column(Integer, nullable=True)
    end_type = Column(SqlEnum(RecurrenceEndType, name="recurrence_end_type"), nullable=False)
    end_after_count = Column(Integer, nullable=True)
    end_by_date = Column(Date, nullable=True)
    buffer_minutes = Column(Integer, nullable=False, default=0, server_default="0")
    occurrences_created = Column(Integer, nullable=False, default=0, server_default="0")
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    is_paused = Column(Boolean, nullable=False, default=False, server_default=false())
    paused_at = Column(DateTime(timezone=True), nullable=True)
    pause_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    appointments = relationship("Appointment", back_populates="series", order_by="Appointment.start_time")
    exceptions = relationship(
        "RecurringSeriesException",
        back_populates="series",
        cascade="all, delete-orphan",
        order_by="RecurringSeriesException.date",
    )
    audit_entries = relationship(
        "RecurringSeriesAuditLog",
        back_populates="series",
        cascade="all, delete-orphan",
        order_by="RecurringSeriesAuditLog.created_at",
    )

    def to_config(self, exception_dates: Iterable[dt.date] = ()) -> RecurrenceConfig:
        return RecurrenceConfig(
            pattern=RecurrencePattern(self.pattern),
            start_date=self.start_date,
            time_of_day=self.time_of_day,
            end_type=RecurrenceEndType(self.end_type),
            day_of_week=self.day_of_week,
            custom_weeks=self.custom_weeks,
            specific_days=tuple(self.specific_days or ()),
            nth_week=self.nth_week,
            end_after_count=self.end_after_count,
            end_by_date=self.end_by_date,
            exception_dates=frozenset(exception_dates),
        )


class RecurringSeriesException(Base):
    __tablename__ = "recurring_series_exceptions"
    __table_args__ = (UniqueConstraint("series_id", "date", name="uq_recurring_series_exceptions_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    series_id = Column(UUID(as_uuid=True), ForeignKey("recurring_series.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    series = relationship("RecurringSeries", back_populates="exceptions")


class RecurringSeriesAuditLog(Base):
    __tablename__ = "recurring_series_audit_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    series_id = Column(UUID(as_uuid=True), ForeignKey("recurring_series.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(SqlEnum(SeriesAuditAction, name="series_audit_action"), nullable=False)
    performed_by = Column(String, nullable=True)
    changes = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    series = relationship("RecurringSeries", back_populates="audit_entries")
