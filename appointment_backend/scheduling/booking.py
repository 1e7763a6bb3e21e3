"""Booking orchestration.

A booking attempt runs three gates in order and stops at the first negative
outcome:

1. the requested instant must parse as an unambiguous UTC timestamp;
2. the doctor must have an ``available`` record for the requested UTC date;
3. when ``check_conflicts`` is set, no active appointment of the doctor (or of
   the requested room) may overlap the requested range.

Scheduling outcomes are returned as a ``BookingResult``; only infrastructure
failures raise. The check-then-insert window is closed by the overlap guard
installed on the ``appointments`` table: a rejected insert is resolved by
re-running the conflict check and reported as a conflict.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import IntegrityError

from appointment_backend.core import config
from appointment_backend.models.appointment import (
    BLOCKING_STATUSES,
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    AppointmentType,
)
from appointment_backend.scheduling.alternatives import AlternativeSlotFinder
from appointment_backend.scheduling.conflicts import ConflictChecker, ConflictQuery
from appointment_backend.scheduling.errors import AppointmentNotFoundError, InvalidInstantError
from appointment_backend.scheduling.intervals import as_utc, parse_utc_instant
from appointment_backend.scheduling.slots import AvailabilitySlot, SlotService
from appointment_backend.stores.appointments import AppointmentStore
from appointment_backend.stores.availability import AvailabilityStore

logger = logging.getLogger(__name__)

INVALID_DATETIME_MESSAGE = (
    'Invalid datetime format. DateTime must be in ISO 8601 UTC format (2006-01-02T15:04:05Z)'
)
DOCTOR_UNAVAILABLE_MESSAGE = (
    'Doctor is not available on the selected date. Please choose an alternative time slot.'
)
SLOT_TAKEN_MESSAGE = 'Time slot is not available. Please choose an alternative time.'
BOOKED_MESSAGE = 'Appointment booked successfully'
UPDATED_MESSAGE = 'Appointment updated successfully'


class ConflictType(str, Enum):
    DOCTOR_UNAVAILABLE = 'doctor_unavailable'
    DOCTOR_BUSY = 'doctor_busy'
    ROOM_BUSY = 'room_busy'


class AppointmentResponse(BaseModel):
    id: int
    healthcare_entity_id: int
    patient_id: int
    doctor_id: int
    date_time: datetime
    duration: int = Field(validation_alias='duration_minutes')
    end_time: datetime
    type: AppointmentType
    status: AppointmentStatus
    reason: str
    notes: str
    priority: AppointmentPriority
    room_id: int | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class ConflictInfo(BaseModel):
    conflict_type: ConflictType
    existing_appointment: AppointmentResponse | None = None
    conflict_time: datetime
    conflict_end: datetime
    description: str


class BookingRequest(BaseModel):
    patient_id: int = Field(gt=0)
    doctor_id: int = Field(gt=0)
    date_time: str
    duration: int = Field(
        ge=config.MIN_APPOINTMENT_DURATION_MINUTES,
        le=config.MAX_APPOINTMENT_DURATION_MINUTES,
    )
    type: AppointmentType
    reason: str = Field(min_length=1)
    notes: str = ''
    priority: AppointmentPriority | None = None
    room_id: int | None = None
    check_conflicts: bool = True

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reason is required.')
        return normalized

    @field_validator('room_id')
    @classmethod
    def normalize_room_id(cls, value: int | None) -> int | None:
        if value is None or value <= 0:
            return None
        return value


class BookingResult(BaseModel):
    success: bool
    appointment_id: int | None = None
    appointment: AppointmentResponse | None = None
    conflicts: list[ConflictInfo] = Field(default_factory=list)
    alternative_slots: list[AvailabilitySlot] = Field(default_factory=list)
    message: str

    @model_validator(mode='after')
    def successful_results_have_no_conflicts(self) -> 'BookingResult':
        if self.success and self.conflicts:
            raise ValueError('A successful booking cannot carry conflicts.')
        return self


def _conflicts_of_type(conflict_type: ConflictType, appointments: list[Appointment]) -> list[ConflictInfo]:
    description = {
        ConflictType.DOCTOR_BUSY: 'Doctor has another appointment at this time',
        ConflictType.ROOM_BUSY: 'Room is occupied at this time',
    }[conflict_type]
    return [
        ConflictInfo(
            conflict_type=conflict_type,
            existing_appointment=AppointmentResponse.model_validate(appointment),
            conflict_time=appointment.date_time,
            conflict_end=appointment.end_time,
            description=description,
        )
        for appointment in appointments
    ]


def describe_conflicts(checker: ConflictChecker, query: ConflictQuery) -> list[ConflictInfo]:
    conflicts = _conflicts_of_type(ConflictType.DOCTOR_BUSY, checker.find_doctor_conflicts(query))
    conflicts += _conflicts_of_type(ConflictType.ROOM_BUSY, checker.find_room_conflicts(query))
    return conflicts


class BookingOrchestrator:
    def __init__(
        self,
        appointment_store: AppointmentStore,
        availability_store: AvailabilityStore,
        conflict_checker: ConflictChecker | None = None,
        alternative_finder: AlternativeSlotFinder | None = None,
    ):
        self.appointment_store = appointment_store
        self.availability_store = availability_store
        self.conflict_checker = conflict_checker or ConflictChecker(appointment_store)
        self.alternative_finder = alternative_finder or AlternativeSlotFinder(
            SlotService(availability_store, appointment_store),
            self.conflict_checker,
        )

    def book(self, request: BookingRequest, healthcare_entity_id: int, acting_user_id: int) -> BookingResult:
        try:
            start_time = parse_utc_instant(request.date_time)
        except InvalidInstantError:
            logger.info('Rejected booking with malformed datetime %r', request.date_time)
            return BookingResult(success=False, message=INVALID_DATETIME_MESSAGE)

        availability = self.availability_store.get_for_date(
            request.doctor_id,
            healthcare_entity_id,
            start_time.date(),
        )
        if availability is None or not availability.is_available():
            logger.info('Doctor %s unavailable on %s', request.doctor_id, start_time.date().isoformat())
            conflict = ConflictInfo(
                conflict_type=ConflictType.DOCTOR_UNAVAILABLE,
                conflict_time=start_time,
                conflict_end=start_time + timedelta(minutes=request.duration),
                description='Doctor is not available on this date',
            )
            return BookingResult(
                success=False,
                conflicts=[conflict],
                alternative_slots=self._alternatives(request.doctor_id, healthcare_entity_id, start_time, request.duration),
                message=DOCTOR_UNAVAILABLE_MESSAGE,
            )

        query = ConflictQuery(
            healthcare_entity_id=healthcare_entity_id,
            doctor_id=request.doctor_id,
            start_time=start_time,
            duration_minutes=request.duration,
            room_id=request.room_id,
        )
        if request.check_conflicts and self.conflict_checker.has_conflict(query):
            return self._slot_taken(query)

        appointment = Appointment(
            healthcare_entity_id=healthcare_entity_id,
            patient_id=request.patient_id,
            doctor_id=request.doctor_id,
            date_time=start_time,
            duration_minutes=request.duration,
            type=request.type,
            status=AppointmentStatus.SCHEDULED,
            reason=request.reason,
            notes=request.notes,
            priority=request.priority or AppointmentPriority.NORMAL,
            room_id=request.room_id,
            is_active=True,
            created_by=acting_user_id,
        )

        try:
            self.appointment_store.insert(appointment)
        except IntegrityError as exc:
            return self._resolve_rejected_write(query, exc)

        logger.info('Booked appointment %s for doctor %s at %s', appointment.id, appointment.doctor_id, start_time.isoformat())
        return BookingResult(
            success=True,
            appointment_id=appointment.id,
            appointment=AppointmentResponse.model_validate(appointment),
            message=BOOKED_MESSAGE,
        )

    def reschedule(
        self,
        appointment_id: int,
        healthcare_entity_id: int,
        start_time: datetime,
        duration_minutes: int,
        room_id: int | None = None,
    ) -> BookingResult:
        appointment = self._get_appointment(appointment_id, healthcare_entity_id)
        start_time = as_utc(start_time)
        query = ConflictQuery(
            healthcare_entity_id=healthcare_entity_id,
            doctor_id=appointment.doctor_id,
            start_time=start_time,
            duration_minutes=duration_minutes,
            room_id=room_id,
            exclude_appointment_id=appointment.id,
        )

        if appointment.status in BLOCKING_STATUSES and self.conflict_checker.has_conflict(query):
            return self._slot_taken(query)

        appointment.date_time = start_time
        appointment.duration_minutes = duration_minutes
        appointment.room_id = room_id if room_id and room_id > 0 else None

        try:
            self.appointment_store.save(appointment)
        except IntegrityError as exc:
            return self._resolve_rejected_write(query, exc)

        return BookingResult(
            success=True,
            appointment_id=appointment.id,
            appointment=AppointmentResponse.model_validate(appointment),
            message=UPDATED_MESSAGE,
        )

    def update_status(
        self,
        appointment_id: int,
        healthcare_entity_id: int,
        status: AppointmentStatus,
        notes: str | None = None,
    ) -> BookingResult:
        appointment = self._get_appointment(appointment_id, healthcare_entity_id)
        query = ConflictQuery(
            healthcare_entity_id=healthcare_entity_id,
            doctor_id=appointment.doctor_id,
            start_time=appointment.date_time,
            duration_minutes=appointment.duration_minutes,
            room_id=appointment.room_id,
            exclude_appointment_id=appointment.id,
        )

        # Reviving a cancelled or no-show visit must not double-book the doctor.
        if (
            status in BLOCKING_STATUSES
            and appointment.status not in BLOCKING_STATUSES
            and self.conflict_checker.has_conflict(query)
        ):
            return self._slot_taken(query)

        appointment.status = status
        if notes is not None:
            appointment.notes = notes

        try:
            self.appointment_store.save(appointment)
        except IntegrityError as exc:
            return self._resolve_rejected_write(query, exc)

        return BookingResult(
            success=True,
            appointment_id=appointment.id,
            appointment=AppointmentResponse.model_validate(appointment),
            message=UPDATED_MESSAGE,
        )

    def cancel(self, appointment_id: int, healthcare_entity_id: int) -> None:
        appointment = self._get_appointment(appointment_id, healthcare_entity_id)
        self.appointment_store.soft_delete(appointment)
        logger.info('Appointment %s removed', appointment_id)

    def _get_appointment(self, appointment_id: int, healthcare_entity_id: int) -> Appointment:
        appointment = self.appointment_store.get_by_id(appointment_id, healthcare_entity_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def _alternatives(
        self,
        doctor_id: int,
        healthcare_entity_id: int,
        start_time: datetime,
        duration_minutes: int,
    ) -> list[AvailabilitySlot]:
        return self.alternative_finder.find_alternatives(doctor_id, healthcare_entity_id, start_time, duration_minutes)

    def _slot_taken(self, query: ConflictQuery) -> BookingResult:
        return BookingResult(
            success=False,
            conflicts=describe_conflicts(self.conflict_checker, query),
            alternative_slots=self._alternatives(
                query.doctor_id,
                query.healthcare_entity_id,
                query.start_time,
                query.duration_minutes,
            ),
            message=SLOT_TAKEN_MESSAGE,
        )

    def _resolve_rejected_write(self, query: ConflictQuery, error: IntegrityError) -> BookingResult:
        # A concurrent booking won the slot between our check and our write.
        if self.conflict_checker.has_conflict(query):
            logger.info(
                'Overlap guard rejected write for doctor %s at %s',
                query.doctor_id,
                query.start_time.isoformat(),
            )
            return self._slot_taken(query)
        raise error
