from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from agenda.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


def init_db(bind=None) -> None:
    # Model modules register their tables on Base when imported.
    from agenda.models import appointment, availability, user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
