import os
from datetime import datetime, time
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from agenda.database import Base  # noqa: E402
from agenda.models import appointment, availability  # noqa: E402,F401
from agenda.models.availability import AvailabilityBlock  # noqa: E402
from agenda.models.user import User  # noqa: E402

# Thursday morning; the Monday below is four days ahead.
NOW = datetime(2026, 1, 1, 8, 0)
MONDAY = datetime(2026, 1, 5).date()
MONDAY_WEEKDAY = 1


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.confirmations: list[int] = []
        self.cancellations: list[int] = []

    def send_booking_confirmation(self, appointment) -> bool:
        self.confirmations.append(appointment.id)
        return self.succeed

    def send_cancellation_notice(self, appointment) -> bool:
        self.cancellations.append(appointment.id)
        return self.succeed


@pytest.fixture
def engine(tmp_path):
    # A file database, so separate sessions really use separate connections.
    engine = create_engine(
        f'sqlite:///{tmp_path / "agenda.db"}',
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users(db):
    people = {
        'provider': User(email='medico@example.com', full_name='Ana Medina', role='provider'),
        'other_provider': User(email='otro.medico@example.com', full_name='Luis Ortega', role='provider'),
        'patient': User(email='paciente@example.com', full_name='Carla Ruiz', role='patient'),
        'other_patient': User(email='otro.paciente@example.com', full_name='Diego Paz', role='patient'),
        'admin': User(email='admin@example.com', full_name='Admin', role='admin'),
    }
    db.add_all(people.values())
    db.commit()
    return SimpleNamespace(**{name: user.id for name, user in people.items()})


@pytest.fixture
def make_block(db):
    def _make_block(provider_id, weekday=MONDAY_WEEKDAY, start=time(9, 0), end=time(12, 0), modality='PRESENCIAL', active=True):
        block = AvailabilityBlock(
            provider_id=provider_id,
            weekday=weekday,
            start_time=start,
            end_time=end,
            modality=modality,
            active=active,
        )
        db.add(block)
        db.commit()
        return block

    return _make_block


@pytest.fixture
def notifier():
    return RecordingNotifier()
