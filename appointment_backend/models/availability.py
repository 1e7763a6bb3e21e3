"""Doctor availability model definitions."""

from datetime import timezone
from enum import Enum

from sqlalchemy import Column, Date, Enum as SAEnum, Integer, String, UniqueConstraint, event

from appointment_backend.database import Base, UTCDateTime, utc_now
from appointment_backend.models.appointment import enum_values


class AvailabilityStatus(str, Enum):
    AVAILABLE = 'available'
    UNAVAILABLE = 'unavailable'
    VACATION = 'vacation'
    TRAINING = 'training'
    SICK_LEAVE = 'sick_leave'
    MEETING = 'meeting'


class DoctorAvailability(Base):
    """A doctor's declared working window for one UTC calendar date."""
    __tablename__ = 'doctor_availability'
    __table_args__ = (
        UniqueConstraint('healthcare_entity_id', 'doctor_id', 'date', name='uq_doctor_availability_per_date'),
    )

    id = Column(Integer, primary_key=True)
    healthcare_entity_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    status = Column(
        SAEnum(AvailabilityStatus, native_enum=False, values_callable=enum_values, length=20, validate_strings=True),
        nullable=False,
    )
    date = Column(Date, nullable=False)
    start_datetime = Column(UTCDateTime, nullable=False)
    end_datetime = Column(UTCDateTime, nullable=False)
    break_start_datetime = Column(UTCDateTime, nullable=True)
    break_end_datetime = Column(UTCDateTime, nullable=True)
    notes = Column(String, nullable=False, default='')
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)
    created_by = Column(Integer, nullable=True)

    def calendar_date(self):
        return self.start_datetime.astimezone(timezone.utc).date()

    def is_available(self) -> bool:
        return self.status == AvailabilityStatus.AVAILABLE

    @property
    def has_break(self) -> bool:
        return self.break_start_datetime is not None and self.break_end_datetime is not None

    def validate_window(self) -> None:
        if self.end_datetime <= self.start_datetime:
            raise ValueError('Availability must end after it starts.')

        if (self.break_start_datetime is None) != (self.break_end_datetime is None):
            raise ValueError('Break start and break end must be provided together.')

        if self.has_break:
            if self.break_end_datetime <= self.break_start_datetime:
                raise ValueError('Break must end after it starts.')
            if self.break_start_datetime < self.start_datetime or self.break_end_datetime > self.end_datetime:
                raise ValueError('Break must lie within the availability window.')


@event.listens_for(DoctorAvailability, 'before_insert')
@event.listens_for(DoctorAvailability, 'before_update')
def _sync_calendar_date(mapper, connection, target: DoctorAvailability) -> None:
    target.date = target.calendar_date()
