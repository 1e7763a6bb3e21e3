import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from appointment_backend.database import Base  # noqa: E402
from appointment_backend.models.appointment import (  # noqa: E402
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    AppointmentType,
)
from appointment_backend.models.availability import AvailabilityStatus, DoctorAvailability  # noqa: E402

ENTITY_ID = 1
DOCTOR_ID = 7
PATIENT_ID = 42


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[DoctorAvailability.__table__, Appointment.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, DoctorAvailability.__table__])
        engine.dispose()


@pytest.fixture
def add_availability(db_session):
    def _add(
        start: datetime,
        end: datetime,
        status: AvailabilityStatus = AvailabilityStatus.AVAILABLE,
        break_start: datetime | None = None,
        break_end: datetime | None = None,
        doctor_id: int = DOCTOR_ID,
        healthcare_entity_id: int = ENTITY_ID,
    ) -> DoctorAvailability:
        record = DoctorAvailability(
            healthcare_entity_id=healthcare_entity_id,
            doctor_id=doctor_id,
            status=status,
            start_datetime=start,
            end_datetime=end,
            break_start_datetime=break_start,
            break_end_datetime=break_end,
        )
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _add


@pytest.fixture
def add_appointment(db_session):
    def _add(
        start: datetime,
        duration_minutes: int = 30,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        doctor_id: int = DOCTOR_ID,
        room_id: int | None = None,
        is_active: bool = True,
        healthcare_entity_id: int = ENTITY_ID,
    ) -> Appointment:
        appointment = Appointment(
            healthcare_entity_id=healthcare_entity_id,
            patient_id=PATIENT_ID,
            doctor_id=doctor_id,
            date_time=start,
            duration_minutes=duration_minutes,
            type=AppointmentType.CONSULTATION,
            status=status,
            reason='Check-up',
            priority=AppointmentPriority.NORMAL,
            room_id=room_id,
            is_active=is_active,
        )
        db_session.add(appointment)
        db_session.commit()
        db_session.refresh(appointment)
        return appointment

    return _add
