from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import DateTime, create_engine, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from appointment_backend.core import config


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False

BLOCKING_STATUS_SQL = "('scheduled', 'confirmed', 'in-progress')"

DOCTOR_OVERLAP_GUARD = 'appointments_doctor_no_overlap'
ROOM_OVERLAP_GUARD = 'appointments_room_no_overlap'

_POSTGRES_GUARDS = {
    DOCTOR_OVERLAP_GUARD: f'''
        ALTER TABLE appointments ADD CONSTRAINT {DOCTOR_OVERLAP_GUARD}
        EXCLUDE USING gist (
            healthcare_entity_id WITH =,
            doctor_id WITH =,
            tstzrange(date_time, end_time, '[)') WITH &&
        ) WHERE (is_active AND status IN {BLOCKING_STATUS_SQL})
    ''',
    ROOM_OVERLAP_GUARD: f'''
        ALTER TABLE appointments ADD CONSTRAINT {ROOM_OVERLAP_GUARD}
        EXCLUDE USING gist (
            healthcare_entity_id WITH =,
            room_id WITH =,
            tstzrange(date_time, end_time, '[)') WITH &&
        ) WHERE (is_active AND room_id IS NOT NULL AND status IN {BLOCKING_STATUS_SQL})
    ''',
}


def _sqlite_guard(name: str, event: str, scope_column: str) -> str:
    # Half-open ranges: rows that only touch at a boundary are accepted.
    self_filter = 'AND id != NEW.id' if event == 'UPDATE' else ''
    return f'''
        CREATE TRIGGER IF NOT EXISTS {name}_{event.lower()}
        BEFORE {event} ON appointments
        WHEN NEW.is_active = 1
            AND NEW.{scope_column} IS NOT NULL
            AND NEW.status IN {BLOCKING_STATUS_SQL}
        BEGIN
            SELECT RAISE(ABORT, '{name}')
            WHERE EXISTS (
                SELECT 1 FROM appointments
                WHERE healthcare_entity_id = NEW.healthcare_entity_id
                    AND {scope_column} = NEW.{scope_column}
                    AND is_active = 1
                    AND status IN {BLOCKING_STATUS_SQL}
                    AND date_time < NEW.end_time
                    AND NEW.date_time < end_time
                    {self_filter}
            );
        END
    '''


_SQLITE_GUARDS = [
    _sqlite_guard(name, event, column)
    for name, column in ((DOCTOR_OVERLAP_GUARD, 'doctor_id'), (ROOM_OVERLAP_GUARD, 'room_id'))
    for event in ('INSERT', 'UPDATE')
]


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that is always stored and returned in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError('Naive datetimes cannot be stored; supply a UTC instant.')
        value = value.astimezone(timezone.utc)
        if dialect.name == 'sqlite':
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def install_overlap_guards(connection: Connection) -> None:
    if connection.dialect.name == 'postgresql':
        connection.exec_driver_sql('CREATE EXTENSION IF NOT EXISTS btree_gist')
        existing = {
            row[0]
            for row in connection.execute(
                text("SELECT conname FROM pg_constraint WHERE conrelid = 'appointments'::regclass")
            )
        }
        for name, statement in _POSTGRES_GUARDS.items():
            if name not in existing:
                connection.exec_driver_sql(statement)
    elif connection.dialect.name == 'sqlite':
        for statement in _SQLITE_GUARDS:
            connection.exec_driver_sql(statement)


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_availability' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_doctor_availability_doctor_date '
                    'ON doctor_availability(doctor_id, date)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_doctor_availability_entity_date '
                    'ON doctor_availability(healthcare_entity_id, date)'
                )
            )

        _availability_schema_checked = True


def add_end_time_column(connection: Connection) -> None:
    """Add ``end_time`` to a legacy appointments table and derive it from the duration."""
    if connection.dialect.name == 'postgresql':
        connection.execute(text('ALTER TABLE appointments ADD COLUMN end_time TIMESTAMP WITH TIME ZONE'))
        backfill = "date_time + (duration_minutes || ' minutes')::interval"
    else:
        connection.execute(text('ALTER TABLE appointments ADD COLUMN end_time DATETIME'))
        # Same text layout SQLAlchemy writes for SQLite datetimes; keeps the fraction of date_time.
        backfill = (
            "strftime('%Y-%m-%d %H:%M:%S', date_time, '+' || duration_minutes || ' minutes') "
            '|| substr(date_time, 20)'
        )

    connection.execute(text(f'UPDATE appointments SET end_time = {backfill} WHERE end_time IS NULL'))


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}

        with engine.begin() as connection:
            if 'end_time' not in existing_columns:
                add_end_time_column(connection)
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_conflict_check '
                    'ON appointments(healthcare_entity_id, doctor_id, date_time, end_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_room_range '
                    'ON appointments(healthcare_entity_id, room_id, date_time, end_time)'
                )
            )
            install_overlap_guards(connection)

        _appointment_schema_checked = True
