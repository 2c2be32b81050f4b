import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./careportal.db")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_windows' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_windows')}
        migration_steps = [
            ('window_date', 'ALTER TABLE availability_windows ADD COLUMN window_date DATE'),
            ('slot_minutes', 'ALTER TABLE availability_windows ADD COLUMN slot_minutes INTEGER'),
            ('is_blocked', 'ALTER TABLE availability_windows ADD COLUMN is_blocked BOOLEAN DEFAULT FALSE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_doctor_day ON availability_windows(doctor_id, day_of_week)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_doctor_date ON availability_windows(doctor_id, window_date)')
            )

        _availability_schema_checked = True


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
            ('doctor_id', 'ALTER TABLE appointments ADD COLUMN doctor_id INTEGER'),
            ('visit_type', 'ALTER TABLE appointments ADD COLUMN visit_type VARCHAR'),
            ('modality', "ALTER TABLE appointments ADD COLUMN modality VARCHAR DEFAULT 'in-person'"),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('rescheduled_from_id', 'ALTER TABLE appointments ADD COLUMN rescheduled_from_id INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, appointment_date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_date ON appointments(patient_id, appointment_date)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_slot '
                    "ON appointments(doctor_id, appointment_date, start_time) WHERE status != 'cancelled'"
                )
            )

        _appointment_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
