"""Appointment model definitions."""

import enum
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from agenda.database import Base


class AppointmentStatus(str, enum.Enum):
    AGENDADA = "AGENDADA"
    CONFIRMADA = "CONFIRMADA"
    COMPLETADA = "COMPLETADA"
    CANCELADA = "CANCELADA"


ACTIVE_STATUSES = (AppointmentStatus.AGENDADA.value, AppointmentStatus.CONFIRMADA.value)


class Appointment(Base):
    """Represents a booked appointment. Rows are never deleted; cancellation is a status."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_datetime = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    modality = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.AGENDADA.value)
    reason = Column(String)
    cancellation_reason = Column(String)
    virtual_link = Column(String)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index("idx_appointments_provider_start", "provider_id", "start_datetime"),
        Index("idx_appointments_patient_start", "patient_id", "start_datetime"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def end_datetime(self) -> datetime:
        return self.start_datetime + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class AppointmentSlotClaim(Base):
    """Reserves one minute of a provider's time for an active appointment.

    The unique (provider_id, minute) pair is what makes two overlapping
    bookings impossible to commit, whatever the isolation level.
    """
    __tablename__ = "appointment_slot_claims"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    minute = Column(DateTime, nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("provider_id", "minute", name="uq_slot_claim_provider_minute"),
    )
