import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.activity_log import ActivityLog  # noqa: E402,F401
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.availability import AvailabilityWindow  # noqa: E402
from backend.models.doctor import Doctor  # noqa: E402
from backend.models.notification import Notification  # noqa: E402,F401
from backend.models.user import User  # noqa: E402
from backend.scheduling.domain import Actor, Role  # noqa: E402
from backend.scheduling.store import SchedulingStore  # noqa: E402

# 2025-04-10 is a Thursday.
BOOKING_DAY = date(2025, 4, 10)
NOW = datetime(2025, 4, 9, 8, 0)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def users(db):
    seeded = {
        'patient': User(email='pat@example.com', role='patient', first_name='Pat', last_name='Jones'),
        'other_patient': User(email='sam@example.com', role='patient', first_name='Sam', last_name='Lee'),
        'doctor': User(email='dr.ada@example.com', role='doctor', first_name='Ada', last_name='Moss'),
        'other_doctor': User(email='dr.ben@example.com', role='doctor', first_name='Ben', last_name='Ortiz'),
        'admin': User(email='admin@example.com', role='admin'),
    }
    db.add_all(seeded.values())
    db.commit()
    return seeded


@pytest.fixture
def doctor(db, users):
    record = Doctor(
        user_id=users['doctor'].id,
        display_name='Dr. Ada Moss',
        specialties=['Cardiology', 'General Practice'],
        is_virtual=False,
        consultation_fee=120,
        slot_minutes=30,
        location='Memphis, TN',
        hospital='Riverside Clinic',
        rating=4.6,
        reviews_count=40,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def virtual_doctor(db, users):
    record = Doctor(
        user_id=users['other_doctor'].id,
        display_name='Dr. Ben Ortiz',
        specialties=['Neurology'],
        is_virtual=True,
        consultation_fee=90,
        slot_minutes=30,
        location='Nashville, TN',
        hospital='Midtown Neurology',
        rating=4.9,
        reviews_count=12,
        is_featured=True,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def morning_window(db, doctor):
    """09:00-10:00 on the booking day, at the doctor's 30-minute granularity."""
    window = AvailabilityWindow(
        doctor_id=doctor.id,
        window_date=BOOKING_DAY,
        start_time=time(9, 0),
        end_time=time(10, 0),
    )
    db.add(window)
    db.commit()
    return window


@pytest.fixture
def store(db):
    return SchedulingStore(db)


@pytest.fixture
def patient_actor(users):
    return Actor(id=users['patient'].id, role=Role.PATIENT)


@pytest.fixture
def doctor_actor(users, doctor):
    return Actor(id=users['doctor'].id, role=Role.DOCTOR, doctor_id=doctor.id)


@pytest.fixture
def admin_actor(users):
    return Actor(id=users['admin'].id, role=Role.ADMIN)


@pytest.fixture
def make_appointment(db, users, doctor):
    def _make(start: time, day: date = BOOKING_DAY, status: str = 'scheduled', duration_minutes: int = 30, **fields):
        appointment = Appointment(
            patient_id=fields.pop('patient_id', users['patient'].id),
            doctor_id=fields.pop('doctor_id', doctor.id),
            doctor_name=doctor.display_name,
            specialty='Cardiology',
            appointment_date=day,
            start_time=start,
            duration_minutes=duration_minutes,
            visit_type='consultation',
            modality='in-person',
            status=status,
            **fields,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make
