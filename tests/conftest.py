import os
from datetime import date

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.doctor import Doctor  # noqa: E402
from backend.models.slot import Slot  # noqa: E402
from backend.services.slot_locks import SlotLockRegistry  # noqa: E402

SLOT_DATE = date(2024, 6, 1)


@pytest.fixture
def booking_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "booking.db"}',
        connect_args={'check_same_thread': False, 'timeout': 30},
        poolclass=NullPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def locks():
    return SlotLockRegistry(default_timeout=5)


@pytest.fixture
def add_doctor():
    def _add_doctor(db, name='Dr. Ada', specialization='Cardiology', email=None, default_patient_limit=1) -> Doctor:
        doctor = Doctor(
            name=name,
            email=email or f'{name.lower().replace(" ", "").replace(".", "")}@clinic.test',
            specialization=specialization,
            default_patient_limit=default_patient_limit,
        )
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _add_doctor


@pytest.fixture
def add_slot():
    def _add_slot(
        db,
        doctor_id: int,
        slot_date: date = SLOT_DATE,
        slot_time: str = '09:00',
        patient_limit: int = 1,
        current_bookings: int = 0,
        is_available: bool = True,
    ) -> Slot:
        slot = Slot(
            doctor_id=doctor_id,
            date=slot_date,
            time=slot_time,
            is_available=is_available,
            patient_limit=patient_limit,
            current_bookings=current_bookings,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return _add_slot


@pytest.fixture
def add_appointment():
    def _add_appointment(
        db,
        doctor_id: int,
        patient_id: int,
        slot_date: date = SLOT_DATE,
        slot_time: str = '09:00',
        status: str = 'scheduled',
    ) -> Appointment:
        appointment = Appointment(
            doctor_id=doctor_id,
            patient_id=patient_id,
            date=slot_date,
            time=slot_time,
            appointment_type='consultation',
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add_appointment
