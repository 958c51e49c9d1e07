"""Booked appointments, either standalone or materialized from a series."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, Index, Text, false, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from aesthetech_api.db.base import Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Appointments in these states never block a time slot
NON_BLOCKING_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)
# Appointments in these states are left alone by bulk cancellation
CLOSED_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_staff_start", "staff_id", "start_time"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    staff_id = Column(UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=False)
    service_id = Column(UUID(as_uuid=True), ForeignKey("salon_services.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SqlEnum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    notes = Column(Text, nullable=True)
    series_id = Column(
        UUID(as_uuid=True),
        ForeignKey("recurring_series.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_detached_from_series = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    series = relationship("RecurringSeries", back_populates="appointments")
