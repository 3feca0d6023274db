"""Persistence for appointments and the slot claims that guard them."""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from agenda.core import config
from agenda.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentSlotClaim

ORDERINGS = {
    'start_desc': (Appointment.start_datetime.desc(),),
    'start_asc': (Appointment.start_datetime.asc(),),
    'status': (Appointment.status.asc(), Appointment.start_datetime.desc()),
}


def claimed_minutes(start: datetime, duration_minutes: int) -> list[datetime]:
    return [start + timedelta(minutes=offset) for offset in range(duration_minutes)]


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int, refresh: bool = False) -> Appointment | None:
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if refresh:
            query = query.populate_existing()
        return query.first()

    def list_active_in_window(self, provider_id: int, window_start: datetime, window_end: datetime) -> list[Appointment]:
        """Active appointments that could overlap ``[window_start, window_end)``.

        No appointment is longer than the configured maximum, so anything
        starting earlier than ``window_start`` minus that maximum has ended.
        """
        earliest_start = window_start - timedelta(minutes=config.MAX_APPOINTMENT_DURATION_MINUTES)
        return self.db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_datetime > earliest_start,
            Appointment.start_datetime < window_end,
        ).order_by(Appointment.start_datetime.asc()).all()

    def insert(self, appointment: Appointment) -> Appointment:
        """Add the appointment and claim every minute it occupies.

        Raises ``IntegrityError`` at flush when any of those minutes is
        already claimed for the same provider.
        """
        self.db.add(appointment)
        self.db.flush()
        self.db.add_all(
            AppointmentSlotClaim(
                provider_id=appointment.provider_id,
                minute=minute,
                appointment_id=appointment.id,
            )
            for minute in claimed_minutes(appointment.start_datetime, appointment.duration_minutes)
        )
        self.db.flush()
        return appointment

    def update_status(self, appointment: Appointment, status: str, **fields) -> Appointment:
        """Persist a status change; raises ``StaleDataError`` if another writer got there first."""
        appointment.status = status
        for name, value in fields.items():
            setattr(appointment, name, value)
        self.db.flush()
        return appointment

    def release_claims(self, appointment_id: int) -> None:
        self.db.query(AppointmentSlotClaim).filter(
            AppointmentSlotClaim.appointment_id == appointment_id,
        ).delete(synchronize_session=False)
        self.db.flush()

    def list_for_patient(
        self,
        patient_id: int,
        status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        modality: str | None = None,
        order_by: str = 'start_desc',
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if status:
            query = query.filter(Appointment.status == status)
        if date_from:
            query = query.filter(Appointment.start_datetime >= date_from)
        if date_to:
            query = query.filter(Appointment.start_datetime <= date_to)
        if modality:
            query = query.filter(Appointment.modality == modality)
        return query.order_by(*ORDERINGS[order_by]).all()

    def list_for_provider(
        self,
        provider_id: int,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
        order_by: str = 'start_desc',
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
        if range_start is not None:
            query = query.filter(Appointment.start_datetime >= range_start)
        if range_end is not None:
            query = query.filter(Appointment.start_datetime < range_end)
        return query.order_by(*ORDERINGS[order_by]).all()
