import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from appointment_backend.auth.dependencies import RequestContext, get_request_context
from appointment_backend.models.availability import AvailabilityStatus, DoctorAvailability
from appointment_backend.routes.shared import database_unavailable, ensure_database_ready, get_db, get_timezone_cache
from appointment_backend.scheduling.errors import InvalidAvailabilityError
from appointment_backend.scheduling.intervals import as_utc
from appointment_backend.scheduling.timezones import TimezoneConverter, TimezoneConverterCache
from appointment_backend.stores.availability import AvailabilityStore

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

MAX_AVAILABILITY_NOTES_LENGTH = 600


class AvailabilityRequest(BaseModel):
    doctor_id: int = Field(gt=0)
    status: AvailabilityStatus
    start_datetime: datetime
    end_datetime: datetime
    break_start_datetime: datetime | None = None
    break_end_datetime: datetime | None = None
    notes: str = ''

    @field_validator('start_datetime', 'end_datetime', 'break_start_datetime', 'break_end_datetime')
    @classmethod
    def validate_instant(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return as_utc(value)

    @field_validator('notes', mode='before')
    @classmethod
    def validate_notes(cls, value: str | None) -> str:
        normalized = (value or '').strip()
        if len(normalized) > MAX_AVAILABILITY_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_AVAILABILITY_NOTES_LENGTH} characters or fewer.')
        return normalized


class AvailabilityResponse(BaseModel):
    id: int
    healthcare_entity_id: int
    doctor_id: int
    status: AvailabilityStatus
    date: date
    start_datetime: datetime
    end_datetime: datetime
    break_start_datetime: datetime | None = None
    break_end_datetime: datetime | None = None
    notes: str
    entity_timezone: str = 'UTC'
    local_start: str = ''
    local_end: str = ''

    class Config:
        from_attributes = True


def to_availability_response(record: DoctorAvailability, converter: TimezoneConverter) -> AvailabilityResponse:
    response = AvailabilityResponse.model_validate(record)
    return response.model_copy(
        update={
            'entity_timezone': converter.zone_name,
            'local_start': converter.format_in_entity_zone(record.start_datetime),
            'local_end': converter.format_in_entity_zone(record.end_datetime),
        }
    )


@router.put('', response_model=AvailabilityResponse)
def set_availability(
    data: AvailabilityRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    timezone_cache: TimezoneConverterCache = Depends(get_timezone_cache),
):
    ensure_database_ready()

    record = DoctorAvailability(
        healthcare_entity_id=context.healthcare_entity_id,
        doctor_id=data.doctor_id,
        status=data.status,
        start_datetime=data.start_datetime,
        end_datetime=data.end_datetime,
        break_start_datetime=data.break_start_datetime,
        break_end_datetime=data.break_end_datetime,
        notes=data.notes,
        created_by=context.user_id,
    )

    try:
        saved = AvailabilityStore(db).save(record)
    except InvalidAvailabilityError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Saving availability for doctor %s failed', data.doctor_id)
        raise database_unavailable() from exc

    logger.info('Availability for doctor %s on %s set to %s', saved.doctor_id, saved.date, saved.status.value)
    return to_availability_response(saved, timezone_cache.get(context.healthcare_entity_id))


@router.get('', response_model=AvailabilityResponse)
def get_availability(
    doctor_id: int = Query(..., gt=0),
    date: date = Query(...),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    timezone_cache: TimezoneConverterCache = Depends(get_timezone_cache),
):
    ensure_database_ready()

    try:
        record = AvailabilityStore(db).get_for_date(doctor_id, context.healthcare_entity_id, date)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Loading availability for doctor %s on %s failed', doctor_id, date)
        raise database_unavailable() from exc

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Availability not found.')

    return to_availability_response(record, timezone_cache.get(context.healthcare_entity_id))


@router.delete('/{availability_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(
    availability_id: int,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    store = AvailabilityStore(db)
    try:
        record = store.get_by_id(availability_id, context.healthcare_entity_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Availability not found.')
        store.delete(record)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Deleting availability %s failed', availability_id)
        raise database_unavailable() from exc

    logger.info('Availability %s deleted', availability_id)
