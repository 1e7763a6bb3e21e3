from datetime import date

from sqlalchemy.orm import Session

from appointment_backend.models.availability import DoctorAvailability
from appointment_backend.scheduling.errors import InvalidAvailabilityError


class AvailabilityStore:
    def __init__(self, db: Session):
        self.db = db

    def get_for_date(self, doctor_id: int, healthcare_entity_id: int, day: date) -> DoctorAvailability | None:
        return self.db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.healthcare_entity_id == healthcare_entity_id,
            DoctorAvailability.date == day,
        ).first()

    def get_by_id(self, availability_id: int, healthcare_entity_id: int) -> DoctorAvailability | None:
        return self.db.query(DoctorAvailability).filter(
            DoctorAvailability.id == availability_id,
            DoctorAvailability.healthcare_entity_id == healthcare_entity_id,
        ).first()

    def save(self, record: DoctorAvailability) -> DoctorAvailability:
        """Insert ``record`` or overwrite the existing record for the same doctor and date."""
        try:
            record.validate_window()
        except ValueError as exc:
            raise InvalidAvailabilityError(str(exc)) from exc

        existing = self.get_for_date(record.doctor_id, record.healthcare_entity_id, record.calendar_date())
        if existing is None:
            self.db.add(record)
            target = record
        else:
            existing.status = record.status
            existing.start_datetime = record.start_datetime
            existing.end_datetime = record.end_datetime
            existing.break_start_datetime = record.break_start_datetime
            existing.break_end_datetime = record.break_end_datetime
            existing.notes = record.notes or ''
            target = existing

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(target)
        return target

    def delete(self, record: DoctorAvailability) -> None:
        self.db.delete(record)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
