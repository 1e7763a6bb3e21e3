"""Authoritative doctor and room conflict detection.

An existing appointment conflicts with a proposed booking when it is active,
holds a blocking status (scheduled, confirmed, in-progress), is not the
appointment being edited, and its ``[start, end)`` range intersects the
proposed range. Touching boundaries are not conflicts.
"""

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel, Field, field_validator

from appointment_backend.models.appointment import Appointment
from appointment_backend.scheduling.intervals import as_utc, overlaps
from appointment_backend.stores.appointments import AppointmentStore

logger = logging.getLogger(__name__)


class ConflictQuery(BaseModel):
    healthcare_entity_id: int
    doctor_id: int
    start_time: datetime
    duration_minutes: int = Field(gt=0)
    room_id: int | None = None
    exclude_appointment_id: int | None = None

    class Config:
        frozen = True

    @field_validator('start_time')
    @classmethod
    def normalize_start_time(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def checks_room(self) -> bool:
        return self.room_id is not None and self.room_id > 0


class ConflictChecker:
    def __init__(self, appointment_store: AppointmentStore):
        self.appointment_store = appointment_store

    def has_conflict(self, query: ConflictQuery) -> bool:
        if self.find_doctor_conflicts(query):
            return True

        if query.checks_room and self.find_room_conflicts(query):
            return True

        return False

    def find_doctor_conflicts(self, query: ConflictQuery) -> list[Appointment]:
        candidates = self.appointment_store.get_active_in_range(
            query.healthcare_entity_id,
            query.start_time,
            query.end_time,
            doctor_id=query.doctor_id,
        )
        conflicts = self._blocking_overlaps(query, candidates)
        if conflicts:
            logger.info(
                'Doctor %s has %d conflicting appointment(s) at %s',
                query.doctor_id,
                len(conflicts),
                query.start_time.isoformat(),
            )
        return conflicts

    def find_room_conflicts(self, query: ConflictQuery) -> list[Appointment]:
        if not query.checks_room:
            return []

        candidates = self.appointment_store.get_active_in_range(
            query.healthcare_entity_id,
            query.start_time,
            query.end_time,
            room_id=query.room_id,
        )
        conflicts = self._blocking_overlaps(query, candidates)
        if conflicts:
            logger.info('Room %s is occupied at %s', query.room_id, query.start_time.isoformat())
        return conflicts

    @staticmethod
    def _blocking_overlaps(query: ConflictQuery, candidates: list[Appointment]) -> list[Appointment]:
        return [
            appointment
            for appointment in candidates
            if appointment.is_blocking
            and appointment.id != query.exclude_appointment_id
            and overlaps(appointment.date_time, appointment.end_time, query.start_time, query.end_time)
        ]
