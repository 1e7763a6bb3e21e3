import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from appointment_backend.auth.dependencies import RequestContext, get_request_context
from appointment_backend.core import config
from appointment_backend.models.appointment import AppointmentStatus, AppointmentType
from appointment_backend.routes.shared import database_unavailable, ensure_database_ready, get_db, get_timezone_cache
from appointment_backend.scheduling.booking import (
    AppointmentResponse,
    BookingOrchestrator,
    BookingRequest,
    BookingResult,
    ConflictInfo,
    describe_conflicts,
)
from appointment_backend.scheduling.conflicts import ConflictChecker, ConflictQuery
from appointment_backend.scheduling.errors import AppointmentNotFoundError, InvalidInstantError
from appointment_backend.scheduling.intervals import as_utc, parse_utc_instant
from appointment_backend.scheduling.slots import AvailabilitySlot, SlotService, SlotType
from appointment_backend.scheduling.timezones import TimezoneConverter, TimezoneConverterCache
from appointment_backend.stores.appointments import AppointmentStore, page_window
from appointment_backend.stores.availability import AvailabilityStore

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

DURATION_RANGE = {
    'ge': config.MIN_APPOINTMENT_DURATION_MINUTES,
    'le': config.MAX_APPOINTMENT_DURATION_MINUTES,
}


class SlotView(BaseModel):
    date_time: datetime
    end_time: datetime
    duration: int
    is_available: bool
    slot_type: SlotType
    local_time: str


class TimeSlotsResponse(BaseModel):
    date: date
    doctor_id: int
    duration: int
    entity_timezone: str
    total_slots: int
    available_slots: int
    slots: list[SlotView]
    slots_by_type: dict[str, list[SlotView]]


class ConflictCheckRequest(BaseModel):
    doctor_id: int = Field(gt=0)
    date_time: datetime
    duration: int = Field(**DURATION_RANGE)
    room_id: int | None = None
    exclude_id: int | None = None

    @field_validator('date_time')
    @classmethod
    def validate_date_time(cls, value: datetime) -> datetime:
        return as_utc(value)


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicts: list[ConflictInfo]


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    count: int
    limit: int
    offset: int


class RescheduleRequest(BaseModel):
    date_time: str
    duration: int = Field(**DURATION_RANGE)
    room_id: int | None = None


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus
    notes: str | None = None


def build_orchestrator(db: Session) -> BookingOrchestrator:
    return BookingOrchestrator(AppointmentStore(db), AvailabilityStore(db))


def to_slot_view(slot: AvailabilitySlot, converter: TimezoneConverter) -> SlotView:
    return SlotView(
        date_time=slot.date_time,
        end_time=slot.end_time,
        duration=slot.duration,
        is_available=slot.is_available,
        slot_type=slot.slot_type,
        local_time=converter.format_in_entity_zone(slot.date_time, '%H:%M'),
    )


@router.post('/book', response_model=BookingResult)
def book_appointment(
    data: BookingRequest,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = build_orchestrator(db).book(data, context.healthcare_entity_id, context.user_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking failed for doctor %s', data.doctor_id)
        raise database_unavailable() from exc

    response.status_code = status.HTTP_201_CREATED if result.success else status.HTTP_200_OK
    return result


@router.get('/slots', response_model=TimeSlotsResponse)
def list_time_slots(
    doctor_id: int = Query(..., gt=0),
    date: date = Query(...),
    duration: int = Query(default=30, **DURATION_RANGE),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    timezone_cache: TimezoneConverterCache = Depends(get_timezone_cache),
):
    ensure_database_ready()

    try:
        slots = SlotService(AvailabilityStore(db), AppointmentStore(db)).slots_for_date(
            doctor_id,
            context.healthcare_entity_id,
            date,
            duration,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Slot lookup failed for doctor %s on %s', doctor_id, date)
        raise database_unavailable() from exc

    converter = timezone_cache.get(context.healthcare_entity_id)
    views = [to_slot_view(slot, converter) for slot in slots]
    slots_by_type: dict[str, list[SlotView]] = {}
    for view in views:
        slots_by_type.setdefault(view.slot_type.value, []).append(view)

    return TimeSlotsResponse(
        date=date,
        doctor_id=doctor_id,
        duration=duration,
        entity_timezone=converter.zone_name,
        total_slots=len(views),
        available_slots=sum(1 for view in views if view.is_available),
        slots=views,
        slots_by_type=slots_by_type,
    )


@router.post('/conflicts/check', response_model=ConflictCheckResponse)
def check_conflicts(
    data: ConflictCheckRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    query = ConflictQuery(
        healthcare_entity_id=context.healthcare_entity_id,
        doctor_id=data.doctor_id,
        start_time=data.date_time,
        duration_minutes=data.duration,
        room_id=data.room_id,
        exclude_appointment_id=data.exclude_id,
    )
    checker = ConflictChecker(AppointmentStore(db))

    try:
        conflicts = describe_conflicts(checker, query)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Conflict check failed for doctor %s', data.doctor_id)
        raise database_unavailable() from exc

    return ConflictCheckResponse(has_conflict=bool(conflicts), conflicts=conflicts)


def parse_optional_instant(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_utc_instant(value)
    except InvalidInstantError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    patient_id: int | None = Query(default=None, gt=0),
    doctor_id: int | None = Query(default=None, gt=0),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    appointment_type: AppointmentType | None = Query(default=None, alias='type'),
    date_from: str | None = Query(default=None),
    date_to: str | None = Query(default=None),
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    range_start = parse_optional_instant(date_from)
    range_end = parse_optional_instant(date_to)
    limit, offset = page_window(limit, offset)

    ensure_database_ready()

    try:
        appointments = AppointmentStore(db).search(
            context.healthcare_entity_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=appointment_status,
            appointment_type=appointment_type,
            date_from=range_start,
            date_to=range_end,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Listing appointments failed')
        raise database_unavailable() from exc

    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
        count=len(appointments),
        limit=limit,
        offset=offset,
    )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = AppointmentStore(db).get_by_id(appointment_id, context.healthcare_entity_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Loading appointment %s failed', appointment_id)
        raise database_unavailable() from exc

    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')

    return AppointmentResponse.model_validate(appointment)


@router.put('/{appointment_id}/schedule', response_model=BookingResult)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        start_time = parse_utc_instant(data.date_time)
    except InvalidInstantError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    ensure_database_ready()

    try:
        return build_orchestrator(db).reschedule(
            appointment_id,
            context.healthcare_entity_id,
            start_time,
            data.duration,
            data.room_id,
        )
    except AppointmentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Rescheduling appointment %s failed', appointment_id)
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/status', response_model=BookingResult)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdateRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return build_orchestrator(db).update_status(
            appointment_id,
            context.healthcare_entity_id,
            data.status,
            data.notes,
        )
    except AppointmentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Status update for appointment %s failed', appointment_id)
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        build_orchestrator(db).cancel(appointment_id, context.healthcare_entity_id)
    except AppointmentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Deleting appointment %s failed', appointment_id)
        raise database_unavailable() from exc
