from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


def build_engine(database_url: str, **kwargs):
    if database_url.startswith('sqlite'):
        kwargs.setdefault('connect_args', {'check_same_thread': False})
    return create_engine(database_url, echo=config.DATABASE_ECHO, **kwargs)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_slot_schema_checked = False
_appointment_schema_checked = False


def ensure_slot_schema() -> None:
    global _slot_schema_checked

    if _slot_schema_checked:
        return

    with _schema_lock:
        if _slot_schema_checked:
            return

        inspector = inspect(engine)

        if 'slots' not in inspector.get_table_names():
            _slot_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('slots')}
        migration_steps = [
            ('patient_limit', 'ALTER TABLE slots ADD COLUMN patient_limit INTEGER NOT NULL DEFAULT 1'),
            ('current_bookings', 'ALTER TABLE slots ADD COLUMN current_bookings INTEGER NOT NULL DEFAULT 0'),
            ('updated_at', 'ALTER TABLE slots ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_slots_doctor_date ON slots(doctor_id, date)')
            )

        _slot_schema_checked = True


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
        migration_steps = [
            ('appointment_type', 'ALTER TABLE appointments ADD COLUMN appointment_type VARCHAR'),
            ('symptoms', 'ALTER TABLE appointments ADD COLUMN symptoms VARCHAR'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_slot '
                    'ON appointments(doctor_id, date, time, status)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_status ON appointments(patient_id, status)')
            )

        _appointment_schema_checked = True
