import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from appointment_backend.core import config
from appointment_backend.models.appointment import Appointment, AppointmentStatus, AppointmentType
from appointment_backend.scheduling.intervals import as_utc

logger = logging.getLogger(__name__)


def page_window(limit: int, offset: int) -> tuple[int, int]:
    """Out-of-range limits fall back to the default page size; negative offsets start at zero."""
    if limit <= 0 or limit > config.MAX_PAGE_SIZE:
        limit = config.DEFAULT_PAGE_SIZE
    return limit, max(offset, 0)


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get_active_in_range(
        self,
        healthcare_entity_id: int,
        range_start: datetime,
        range_end: datetime,
        doctor_id: int | None = None,
        room_id: int | None = None,
    ) -> list[Appointment]:
        """Active appointments intersecting ``[range_start, range_end)``, any status."""
        query = self.db.query(Appointment).filter(
            Appointment.healthcare_entity_id == healthcare_entity_id,
            Appointment.is_active.is_(True),
            Appointment.date_time < as_utc(range_end),
            Appointment.end_time > as_utc(range_start),
        )
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if room_id is not None:
            query = query.filter(Appointment.room_id == room_id)

        return query.order_by(Appointment.date_time.asc(), Appointment.id.asc()).all()

    def get_by_id(self, appointment_id: int, healthcare_entity_id: int) -> Appointment | None:
        return self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.healthcare_entity_id == healthcare_entity_id,
            Appointment.is_active.is_(True),
        ).first()

    def search(
        self,
        healthcare_entity_id: int,
        patient_id: int | None = None,
        doctor_id: int | None = None,
        status: AppointmentStatus | None = None,
        appointment_type: AppointmentType | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int = config.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Appointment]:
        """Active appointments matching every given filter, earliest first.

        ``date_from`` and ``date_to`` bound the start time and are both inclusive.
        """
        query = self.db.query(Appointment).filter(
            Appointment.healthcare_entity_id == healthcare_entity_id,
            Appointment.is_active.is_(True),
        )
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if appointment_type is not None:
            query = query.filter(Appointment.type == appointment_type)
        if date_from is not None:
            query = query.filter(Appointment.date_time >= as_utc(date_from))
        if date_to is not None:
            query = query.filter(Appointment.date_time <= as_utc(date_to))

        limit, offset = page_window(limit, offset)
        return query.order_by(Appointment.date_time.asc(), Appointment.id.asc()).offset(offset).limit(limit).all()

    def insert(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def save(self, appointment: Appointment) -> Appointment:
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def soft_delete(self, appointment: Appointment) -> None:
        appointment.is_active = False
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info('Appointment write rejected by an integrity constraint')
            raise
