from datetime import date, datetime, time, timezone

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from agenda.auth import jwt_handler
from agenda.auth.capabilities import Actor
from agenda.auth.dependencies import get_current_actor, get_current_user, get_db
from agenda.core import errors
from agenda.main import app
from agenda.models.user import User
from agenda.routes import appointment_routes, availability_routes
from agenda.routes.appointment_routes import (
    CancelAppointmentRequest,
    CreateAppointmentRequest,
    cancel_appointment,
    confirm_appointment,
    create_appointment,
    list_patient_appointments,
)
from agenda.routes.availability_routes import (
    AvailabilityBlockRequest,
    SetAvailabilityRequest,
    get_provider_availability,
    list_provider_slots,
    set_provider_availability,
)
from agenda.routes.common import raise_http_error
from agenda.services.appointment_service import AppointmentService


@pytest.fixture(autouse=True)
def service_with_clock(monkeypatch: pytest.MonkeyPatch, clock):
    def _build(db):
        return AppointmentService(db, clock=clock)

    monkeypatch.setattr(appointment_routes, 'build_service', _build)
    monkeypatch.setattr(availability_routes, 'build_service', _build)


@pytest.fixture
def people(db, users):
    return {name: db.get(User, user_id) for name, user_id in vars(users).items()}


@pytest.fixture
def morning(users, make_block):
    return make_block(users.provider)


def _booking_request(users, **overrides) -> CreateAppointmentRequest:
    fields = {
        'provider_id': users.provider,
        'start_time': datetime(2026, 1, 5, 9, 0),
        'modality': 'presencial',
    }
    fields.update(overrides)
    return CreateAppointmentRequest(**fields)


def test_create_appointment_request_normalizes_fields(users) -> None:
    request = _booking_request(users, modality=' virtual ', reason='   ')

    assert request.modality == 'VIRTUAL'
    assert request.reason is None
    assert request.duration_minutes == 30


@pytest.mark.parametrize('overrides', [{'modality': 'TELEFONO'}, {'reason': 'x' * 601}])
def test_create_appointment_request_rejects_bad_fields(users, overrides) -> None:
    with pytest.raises(ValidationError):
        _booking_request(users, **overrides)


def test_availability_block_request_rejects_out_of_range_weekday() -> None:
    with pytest.raises(ValidationError):
        AvailabilityBlockRequest(weekday=7, start_time=time(9, 0), end_time=time(10, 0), modality='VIRTUAL')


@pytest.mark.parametrize(
    ('exception', 'status_code', 'code'),
    [
        (errors.ValidationError('bad', code='InvalidRange'), 400, 'InvalidRange'),
        (errors.ForbiddenError('nope'), 403, 'Forbidden'),
        (errors.ProviderNotFound(7), 404, 'ProviderNotFound'),
        (errors.ConflictError('taken'), 409, 'SlotUnavailable'),
        (errors.StateError('too late'), 409, 'InvalidTransition'),
    ],
)
def test_raise_http_error_maps_booking_errors(exception, status_code, code) -> None:
    with pytest.raises(HTTPException) as exception_info:
        raise_http_error(exception)

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail['code'] == code


def test_raise_http_error_reports_database_outage_as_503() -> None:
    with pytest.raises(HTTPException) as exception_info:
        raise_http_error(OperationalError('SELECT 1', {}, Exception('down')))

    assert exception_info.value.status_code == 503


def test_patient_books_for_themselves(db, users, people, morning) -> None:
    response = create_appointment(_booking_request(users), db=db, current_user=people['patient'])

    assert response.patient_id == users.patient
    assert response.status == 'AGENDADA'
    assert response.end_datetime == datetime(2026, 1, 5, 9, 30)
    assert response.notification_sent is False


def test_patient_cannot_book_for_someone_else(db, users, people, morning) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            _booking_request(users, patient_id=users.other_patient),
            db=db,
            current_user=people['patient'],
        )

    assert exception_info.value.status_code == 403


def test_admin_books_on_behalf_of_patient(db, users, people, morning) -> None:
    response = create_appointment(
        _booking_request(users, patient_id=users.other_patient),
        db=db,
        current_user=people['admin'],
    )

    assert response.patient_id == users.other_patient


def test_double_booking_returns_conflict(db, users, people, morning) -> None:
    create_appointment(_booking_request(users), db=db, current_user=people['patient'])

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(users), db=db, current_user=people['other_patient'])

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'SlotUnavailable'


def test_booking_outside_availability_is_bad_request(db, users, people, morning) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            _booking_request(users, start_time=datetime(2026, 1, 5, 13, 0)),
            db=db,
            current_user=people['patient'],
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'OutsideAvailability'


def test_offset_aware_start_time_is_booked_in_local_time(db, users, people, morning) -> None:
    utc_start = datetime(2026, 1, 5, 9, 0).astimezone(timezone.utc).isoformat()

    response = create_appointment(
        _booking_request(users, start_time=utc_start),
        db=db,
        current_user=people['patient'],
    )

    assert response.start_datetime == datetime(2026, 1, 5, 9, 0)


def test_offset_aware_past_start_is_bad_request(db, users, people, morning) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            _booking_request(users, start_time='2025-12-29T09:00:00+02:00'),
            db=db,
            current_user=people['patient'],
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'NotInFuture'


def test_booking_with_unknown_provider_is_not_found(db, users, people) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(users, provider_id=9999), db=db, current_user=people['patient'])

    assert exception_info.value.status_code == 404


def test_patient_cannot_confirm_own_appointment(db, users, people, morning) -> None:
    booked = create_appointment(_booking_request(users), db=db, current_user=people['patient'])

    with pytest.raises(HTTPException) as exception_info:
        confirm_appointment(booked.id, db=db, actor=Actor.from_user(people['patient']))

    assert exception_info.value.status_code == 403


def test_provider_confirms_and_patient_cancels(db, users, people, morning) -> None:
    booked = create_appointment(_booking_request(users), db=db, current_user=people['patient'])

    confirmed = confirm_appointment(booked.id, db=db, actor=Actor.from_user(people['provider']))
    assert confirmed.status == 'CONFIRMADA'

    cancelled = cancel_appointment(
        booked.id,
        CancelAppointmentRequest(reason='Cambio de planes'),
        db=db,
        actor=Actor.from_user(people['patient']),
    )

    assert cancelled.status == 'CANCELADA'
    assert cancelled.cancellation_reason == 'Cambio de planes'


def test_cancel_inside_window_is_conflict(db, users, people, morning, clock) -> None:
    booked = create_appointment(_booking_request(users), db=db, current_user=people['patient'])
    clock.now = datetime(2026, 1, 5, 8, 0)

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(booked.id, None, db=db, actor=Actor.from_user(people['patient']))

    assert exception_info.value.status_code == 409
    assert '24h' in exception_info.value.detail['message']


def test_patient_listing_is_limited_to_owner_or_admin(db, users, people, morning) -> None:
    create_appointment(_booking_request(users), db=db, current_user=people['patient'])

    with pytest.raises(HTTPException) as exception_info:
        list_patient_appointments(
            users.patient,
            status_filter=None,
            date_from=None,
            date_to=None,
            modality=None,
            order_by='start_desc',
            db=db,
            current_user=people['other_patient'],
        )
    assert exception_info.value.status_code == 403

    listed = list_patient_appointments(
        users.patient,
        status_filter=None,
        date_from=None,
        date_to=None,
        modality=None,
        order_by='start_desc',
        db=db,
        current_user=people['admin'],
    )
    assert len(listed) == 1


def test_only_provider_or_admin_changes_schedule(db, users, people) -> None:
    request = SetAvailabilityRequest(blocks=[
        AvailabilityBlockRequest(weekday=2, start_time=time(14, 0), end_time=time(16, 0), modality='virtual'),
    ])

    with pytest.raises(HTTPException) as exception_info:
        set_provider_availability(users.provider, request, db=db, current_user=people['other_provider'])
    assert exception_info.value.status_code == 403

    created = set_provider_availability(users.provider, request, db=db, current_user=people['provider'])
    config = get_provider_availability(users.provider, db=db)

    assert [block.modality for block in created] == ['VIRTUAL']
    assert config.total_blocks == 1
    assert len(config.blocks_by_weekday[2]) == 1


def test_list_provider_slots_rejects_reversed_range(db, users) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_provider_slots(
            users.provider,
            start_date=date(2026, 1, 9),
            end_date=date(2026, 1, 5),
            modality=None,
            slot_duration_minutes=30,
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'InvalidRange'


def test_access_token_round_trip() -> None:
    token = jwt_handler.create_access_token('42')

    payload = jwt_handler.decode_access_token(token)

    assert payload['sub'] == '42'


def test_get_current_user_resolves_token_subject(db, users) -> None:
    token = jwt_handler.create_access_token(str(users.provider))
    credentials = HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)

    user = get_current_user(credentials=credentials, db=db)

    assert user.id == users.provider


def test_get_current_actor_carries_id_and_normalized_role(db, users, people) -> None:
    people['admin'].role = ' Admin '

    actor = get_current_actor(current_user=people['admin'])

    assert actor == Actor(user_id=users.admin, role='admin')
    assert actor.is_admin


@pytest.mark.parametrize('token', ['not-a-jwt', None])
def test_get_current_user_rejects_bad_tokens(db, users, token) -> None:
    token = token or jwt_handler.create_access_token('9999')
    credentials = HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=credentials, db=db)

    assert exception_info.value.status_code == 401


def test_http_booking_flow(session_factory, users, morning) -> None:
    lookup = session_factory()
    patient = lookup.get(User, users.patient)
    utc_ten = datetime(2026, 1, 5, 10, 0).astimezone(timezone.utc)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: patient
    try:
        client = TestClient(app)

        slots = client.get(
            f'/availability/providers/{users.provider}/slots',
            params={'start_date': '2026-01-05', 'end_date': '2026-01-05'},
        )
        booked = client.post('/appointments', json={
            'provider_id': users.provider,
            'start_time': '2026-01-05T09:00:00',
            'modality': 'PRESENCIAL',
        })
        again = client.post('/appointments', json={
            'provider_id': users.provider,
            'start_time': '2026-01-05T09:00:00',
            'modality': 'PRESENCIAL',
        })
        aware = client.post('/appointments', json={
            'provider_id': users.provider,
            'start_time': utc_ten.isoformat().replace('+00:00', 'Z'),
            'modality': 'PRESENCIAL',
        })
        checked = client.post(
            f'/availability/providers/{users.provider}/validate',
            json={'start_time': utc_ten.isoformat()},
        )
    finally:
        app.dependency_overrides.clear()
        lookup.close()

    assert slots.status_code == 200
    assert len(slots.json()) == 6
    assert booked.status_code == 201
    assert booked.json()['status'] == 'AGENDADA'
    assert again.status_code == 409
    assert again.json()['detail']['code'] == 'SlotUnavailable'
    assert aware.status_code == 201
    assert aware.json()['start_datetime'] == '2026-01-05T10:00:00'
    assert checked.status_code == 200
    assert checked.json()['eligible'] is False
    assert checked.json()['reason'] == 'SlotTaken'
