"""Appointment model definitions."""

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import Boolean, Column, Enum as SAEnum, Integer, String, event

from appointment_backend.database import Base, UTCDateTime, install_overlap_guards, utc_now


def enum_values(enum_class) -> list[str]:
    return [member.value for member in enum_class]


class AppointmentType(str, Enum):
    CONSULTATION = 'consultation'
    FOLLOW_UP = 'follow-up'
    PROCEDURE = 'procedure'
    EMERGENCY = 'emergency'


class AppointmentStatus(str, Enum):
    SCHEDULED = 'scheduled'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no-show'


class AppointmentPriority(str, Enum):
    LOW = 'low'
    NORMAL = 'normal'
    HIGH = 'high'
    URGENT = 'urgent'


# Statuses that hold the doctor's (and room's) time for conflict purposes.
BLOCKING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
})

# Slot display only ignores these; completed visits still grey a slot out.
SLOT_IGNORED_STATUSES = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})


def _enum_column(enum_class, **kwargs) -> Column:
    return Column(
        SAEnum(enum_class, native_enum=False, values_callable=enum_values, length=20, validate_strings=True),
        **kwargs,
    )


class Appointment(Base):
    """Represents a booked appointment for a doctor within a healthcare entity."""
    __tablename__ = 'appointments'

    id = Column(Integer, primary_key=True)
    healthcare_entity_id = Column(Integer, nullable=False, index=True)
    patient_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    date_time = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    type = _enum_column(AppointmentType, nullable=False)
    status = _enum_column(AppointmentStatus, nullable=False, default=AppointmentStatus.SCHEDULED)
    reason = Column(String, nullable=False, default='')
    notes = Column(String, nullable=False, default='')
    priority = _enum_column(AppointmentPriority, nullable=False, default=AppointmentPriority.NORMAL)
    room_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)
    created_by = Column(Integer, nullable=True)

    def compute_end_time(self) -> datetime:
        return self.date_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_blocking(self) -> bool:
        return bool(self.is_active) and self.status in BLOCKING_STATUSES

    def __repr__(self) -> str:
        return (
            f'<Appointment id={self.id} doctor={self.doctor_id} '
            f'start={self.date_time} duration={self.duration_minutes} status={self.status}>'
        )


@event.listens_for(Appointment, 'before_insert')
@event.listens_for(Appointment, 'before_update')
def _sync_end_time(mapper, connection, target: Appointment) -> None:
    target.end_time = target.compute_end_time()


@event.listens_for(Appointment.__table__, 'after_create')
def _create_overlap_guards(target, connection, **kwargs) -> None:
    install_overlap_guards(connection)
