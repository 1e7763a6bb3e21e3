"""Slot generation.

Discretizes a doctor's availability window into fixed-size bookable slots:

- candidates start at the window start and advance by ``step_minutes`` while
  the whole slot still fits inside the window;
- a candidate intersecting the break is not emitted and the cursor jumps to the
  end of the break;
- a candidate overlapping an existing active appointment is emitted with
  ``is_available=False``. Only cancelled and no-show appointments are ignored
  here, so a completed visit still marks its slot as taken.

``slot_type`` is derived from the UTC hour of the slot start and is only a
display hint.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum

from pydantic import BaseModel

from appointment_backend.core import config
from appointment_backend.models.appointment import SLOT_IGNORED_STATUSES, Appointment
from appointment_backend.models.availability import DoctorAvailability
from appointment_backend.scheduling.intervals import as_utc, overlaps
from appointment_backend.stores.appointments import AppointmentStore
from appointment_backend.stores.availability import AvailabilityStore

logger = logging.getLogger(__name__)

AFTERNOON_START_HOUR = 12
EVENING_START_HOUR = 17


class SlotType(str, Enum):
    MORNING = 'morning'
    AFTERNOON = 'afternoon'
    EVENING = 'evening'


class AvailabilitySlot(BaseModel):
    date_time: datetime
    duration: int
    is_available: bool
    slot_type: SlotType

    class Config:
        frozen = True

    @property
    def end_time(self) -> datetime:
        return self.date_time + timedelta(minutes=self.duration)


class AvailabilityWindow(BaseModel):
    start: datetime
    end: datetime
    break_start: datetime | None = None
    break_end: datetime | None = None

    class Config:
        frozen = True

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    @classmethod
    def from_availability(cls, record: DoctorAvailability) -> 'AvailabilityWindow':
        return cls(
            start=as_utc(record.start_datetime),
            end=as_utc(record.end_datetime),
            break_start=as_utc(record.break_start_datetime) if record.has_break else None,
            break_end=as_utc(record.break_end_datetime) if record.has_break else None,
        )


def slot_type_for(instant: datetime) -> SlotType:
    hour = as_utc(instant).hour
    if hour < AFTERNOON_START_HOUR:
        return SlotType.MORNING
    if hour < EVENING_START_HOUR:
        return SlotType.AFTERNOON
    return SlotType.EVENING


def _occupies_slot(appointment: Appointment) -> bool:
    return bool(appointment.is_active) and appointment.status not in SLOT_IGNORED_STATUSES


def generate_slots(
    window: AvailabilityWindow,
    appointments: list[Appointment],
    slot_duration_minutes: int,
    step_minutes: int = 30,
) -> list[AvailabilitySlot]:
    if slot_duration_minutes <= 0:
        raise ValueError('Slot duration must be a positive number of minutes.')
    if step_minutes <= 0:
        raise ValueError('Slot step must be a positive number of minutes.')

    slot_length = timedelta(minutes=slot_duration_minutes)
    step = timedelta(minutes=step_minutes)
    occupied = [
        (appointment.date_time, appointment.end_time)
        for appointment in appointments
        if _occupies_slot(appointment)
    ]

    slots: list[AvailabilitySlot] = []
    current = as_utc(window.start)
    window_end = as_utc(window.end)

    while current + slot_length <= window_end:
        slot_end = current + slot_length

        if window.has_break and overlaps(current, slot_end, window.break_start, window.break_end):
            current = as_utc(window.break_end)
            continue

        is_available = not any(
            overlaps(current, slot_end, booked_start, booked_end)
            for booked_start, booked_end in occupied
        )

        slots.append(
            AvailabilitySlot(
                date_time=current,
                duration=slot_duration_minutes,
                is_available=is_available,
                slot_type=slot_type_for(current),
            )
        )
        current += step

    return slots


class SlotService:
    def __init__(
        self,
        availability_store: AvailabilityStore,
        appointment_store: AppointmentStore,
        step_minutes: int | None = None,
    ):
        self.availability_store = availability_store
        self.appointment_store = appointment_store
        self.step_minutes = config.SLOT_STEP_MINUTES if step_minutes is None else step_minutes

    def slots_for_date(
        self,
        doctor_id: int,
        healthcare_entity_id: int,
        day: date,
        duration_minutes: int,
    ) -> list[AvailabilitySlot]:
        availability = self.availability_store.get_for_date(doctor_id, healthcare_entity_id, day)
        if availability is None or not availability.is_available():
            logger.debug('Doctor %s has no bookable availability on %s', doctor_id, day)
            return []

        window = AvailabilityWindow.from_availability(availability)
        appointments = self.appointment_store.get_active_in_range(
            healthcare_entity_id,
            window.start,
            window.end,
            doctor_id=doctor_id,
        )
        return generate_slots(window, appointments, duration_minutes, self.step_minutes)

