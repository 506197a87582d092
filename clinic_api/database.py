import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_api.core import config


logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

APPOINTMENT_OVERLAP_CONSTRAINT = 'appointments_no_active_overlap'

_schema_lock = Lock()
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def install_postgres_overlap_constraint(connection: Connection) -> None:
    existing = connection.execute(
        text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
        {'name': APPOINTMENT_OVERLAP_CONSTRAINT},
    ).first()
    if existing is not None:
        return

    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    connection.execute(
        text(
            f'ALTER TABLE appointments ADD CONSTRAINT {APPOINTMENT_OVERLAP_CONSTRAINT} '
            "EXCLUDE USING gist (doctor_id WITH =, tsrange(start_at, end_at, '[)') WITH &&) "
            "WHERE (status IN ('pending', 'confirmed'))"
        )
    )
    logger.info('Installed appointment overlap exclusion constraint.')


def install_sqlite_overlap_trigger(connection: Connection) -> None:
    # The abort message carries the constraint name so commit failures map to a slot conflict.
    connection.execute(
        text(
            f'CREATE TRIGGER IF NOT EXISTS {APPOINTMENT_OVERLAP_CONSTRAINT} '
            'BEFORE INSERT ON appointments '
            "WHEN NEW.status IN ('pending', 'confirmed') "
            'BEGIN '
            f"SELECT RAISE(ABORT, '{APPOINTMENT_OVERLAP_CONSTRAINT}') "
            'WHERE EXISTS ('
            'SELECT 1 FROM appointments '
            'WHERE doctor_id = NEW.doctor_id '
            "AND status IN ('pending', 'confirmed') "
            'AND start_at < NEW.end_at AND end_at > NEW.start_at'
            '); '
            'END'
        )
    )


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    """Make the database itself refuse double bookings.

    PostgreSQL gets an exclusion constraint and SQLite a ``BEFORE INSERT``
    trigger. Either one rejects a second active appointment for the same
    doctor whose ``[start_at, end_at)`` range intersects an existing one, even
    when two bookings race past the application-level overlap check.
    """
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(bind)
        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        with bind.begin() as connection:
            if bind.dialect.name == 'postgresql':
                install_postgres_overlap_constraint(connection)
            elif bind.dialect.name == 'sqlite':
                install_sqlite_overlap_trigger(connection)

        _appointment_schema_checked = True
