from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.auth.dependencies import get_current_user, get_db
from agenda.core import config
from agenda.core.errors import BookingError
from agenda.models.user import User
from agenda.routes.common import build_service, raise_http_error, require_self_or_admin

router = APIRouter(tags=['availability'])


class AvailabilityBlockRequest(BaseModel):
    weekday: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    modality: str
    active: bool = True

    @field_validator('modality')
    @classmethod
    def validate_modality(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {'PRESENCIAL', 'VIRTUAL'}:
            raise ValueError('Modality must be PRESENCIAL or VIRTUAL.')
        return normalized


class SetAvailabilityRequest(BaseModel):
    blocks: list[AvailabilityBlockRequest]


class AvailabilityBlockResponse(BaseModel):
    id: int
    weekday: int
    start_time: time
    end_time: time
    modality: str
    active: bool

    class Config:
        from_attributes = True


class AvailabilityConfigResponse(BaseModel):
    provider_id: int
    total_blocks: int
    blocks_by_weekday: dict[int, list[AvailabilityBlockResponse]]


class TimeSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    modality: str
    available: bool


class ValidateSlotRequest(BaseModel):
    start_time: datetime
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES


class ValidateSlotResponse(BaseModel):
    eligible: bool
    reason: str | None = None
    message: str | None = None
    modality: str | None = None


def to_slot_response(slot) -> TimeSlotResponse:
    return TimeSlotResponse(
        start_time=slot.start,
        end_time=slot.end,
        modality=slot.modality,
        available=slot.available,
    )


@router.put('/providers/{provider_id}/blocks', response_model=list[AvailabilityBlockResponse])
def set_provider_availability(
    provider_id: int,
    data: SetAvailabilityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_self_or_admin(current_user, provider_id, 'Only the provider or an admin can change this schedule.')

    try:
        return build_service(db).set_availability(
            provider_id,
            [block.model_dump() for block in data.blocks],
        )
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.get('/providers/{provider_id}/blocks', response_model=AvailabilityConfigResponse)
def get_provider_availability(provider_id: int, db: Session = Depends(get_db)):
    try:
        blocks_by_weekday = build_service(db).get_availability_config(provider_id)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return AvailabilityConfigResponse(
        provider_id=provider_id,
        total_blocks=sum(len(blocks) for blocks in blocks_by_weekday.values()),
        blocks_by_weekday={
            weekday: [AvailabilityBlockResponse.model_validate(block) for block in blocks]
            for weekday, blocks in blocks_by_weekday.items()
        },
    )


@router.get('/providers/{provider_id}/slots', response_model=list[TimeSlotResponse])
def list_provider_slots(
    provider_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    modality: str | None = Query(default=None),
    slot_duration_minutes: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    try:
        slots = build_service(db).get_availability(
            provider_id,
            start_date,
            end_date,
            modality=modality,
            slot_duration_minutes=slot_duration_minutes,
        )
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return [to_slot_response(slot) for slot in slots]


@router.get('/providers/{provider_id}/next-slots', response_model=list[TimeSlotResponse])
def list_next_provider_slots(
    provider_id: int,
    count: int = Query(default=10),
    modality: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        slots = build_service(db).get_next_available_slots(provider_id, count=count, modality=modality)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return [to_slot_response(slot) for slot in slots]


@router.post('/providers/{provider_id}/validate', response_model=ValidateSlotResponse, status_code=status.HTTP_200_OK)
def validate_provider_slot(provider_id: int, data: ValidateSlotRequest, db: Session = Depends(get_db)):
    try:
        result = build_service(db).validate_slot(provider_id, data.start_time, data.duration_minutes)
    except (BookingError, SQLAlchemyError) as exc:
        raise_http_error(exc)

    return ValidateSlotResponse(
        eligible=result.eligible,
        reason=result.reason,
        message=result.message,
        modality=result.matched_modality,
    )
