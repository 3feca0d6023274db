from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.auth.capabilities import Actor
from agenda.auth.dependencies import get_current_actor, get_current_user, get_db
from agenda.core import config
from agenda.core.errors import BookingError
from agenda.models.user import User
from agenda.routes.common import build_service, raise_http_error, require_self_or_admin

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    start_time: datetime
    modality: str
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    reason: str | None = None
    patient_id: int | None = None

    @field_validator('modality')
    @classmethod
    def validate_modality(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {'PRESENCIAL', 'VIRTUAL'}:
            raise ValueError('Modality must be PRESENCIAL or VIRTUAL.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > config.MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {config.MAX_REASON_LENGTH} characters or fewer.')

        return normalized


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    provider_id: int
    start_datetime: datetime
    end_datetime: datetime
    duration_minutes: int
    modality: str
    status: str
    reason: str | None = None
    cancellation_reason: str | None = None
    virtual_link: str | None = None

    class Config:
        from_attributes = True


class BookingResponse(AppointmentResponse):
    notification_sent: bool


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # Patients book for themselves; only admins may book on someone else's behalf.
    patient_id = current_user.id
    if data.patient_id is not None and data.patient_id != current_user.id:
        require_self_or_admin(current_user, data.patient_id, 'Only admins can book for another patient.')
        patient_id = data.patient_id

    try:
        result = build_service(db).create_appointment(
            provider_id=data.provider_id,
            patient_id=patient_id,
            start=data.start_time,
            modality=data.modality,
            duration_minutes=data.duration_minutes,
            reason=data.reason,
        )
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    response = AppointmentResponse.model_validate(result.appointment)
    return BookingResponse(**response.model_dump(), notification_sent=result.notification_sent)


@router.get('/patients/{patient_id}', response_model=list[AppointmentResponse])
def list_patient_appointments(
    patient_id: int,
    status_filter: str | None = Query(default=None, alias='status'),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    modality: str | None = Query(default=None),
    order_by: str = Query(default='start_desc'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_self_or_admin(current_user, patient_id, 'Only the patient or an admin can view these appointments.')

    try:
        return build_service(db).list_patient_appointments(
            patient_id,
            status=status_filter,
            date_from=date_from,
            date_to=date_to,
            modality=modality,
            order_by=order_by,
        )
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.get('/providers/{provider_id}', response_model=list[AppointmentResponse])
def list_provider_appointments(
    provider_id: int,
    period: str | None = Query(default=None),
    order_by: str = Query(default='start_desc'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_self_or_admin(current_user, provider_id, 'Only the provider or an admin can view this agenda.')

    try:
        return build_service(db).list_provider_appointments(provider_id, period=period, order_by=order_by)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return build_service(db).confirm_appointment(appointment_id, actor)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return build_service(db).complete_appointment(appointment_id, actor)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = data.reason if data else None

    try:
        return build_service(db).cancel_appointment(appointment_id, actor, reason=reason)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)
