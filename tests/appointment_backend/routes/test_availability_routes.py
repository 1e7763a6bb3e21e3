from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from appointment_backend.auth.dependencies import RequestContext
from appointment_backend.models.availability import AvailabilityStatus, DoctorAvailability
from appointment_backend.routes.availability_routes import (
    AvailabilityRequest,
    delete_availability,
    get_availability,
    set_availability,
)
from appointment_backend.scheduling.timezones import TimezoneConverterCache

ROUTES_MODULE = 'appointment_backend.routes.availability_routes'
CONTEXT = RequestContext(user_id=99, healthcare_entity_id=1)
DOCTOR_ID = 7


def utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 15, hour, minute, tzinfo=timezone.utc)


class StaticLookup:
    def get(self, healthcare_entity_id: int) -> str:
        return 'Europe/Berlin'


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(f'{ROUTES_MODULE}.ensure_database_ready', lambda: None)


@pytest.fixture
def timezone_cache() -> TimezoneConverterCache:
    return TimezoneConverterCache(StaticLookup(), ttl_seconds=60)


def availability_request(**overrides) -> AvailabilityRequest:
    values = {
        'doctor_id': DOCTOR_ID,
        'status': 'available',
        'start_datetime': utc(8),
        'end_datetime': utc(16),
        'break_start_datetime': utc(11),
        'break_end_datetime': utc(12),
        'notes': '  Outpatient clinic  ',
    }
    values.update(overrides)
    return AvailabilityRequest(**values)


def test_availability_request_normalizes_notes_and_offsets() -> None:
    request = availability_request(start_datetime='2025-01-15T09:00:00+01:00', notes=None)

    assert request.start_datetime == utc(8)
    assert request.notes == ''


def test_availability_request_rejects_naive_datetimes() -> None:
    with pytest.raises(ValidationError):
        availability_request(start_datetime=datetime(2025, 1, 15, 8, 0))


def test_availability_request_rejects_unknown_status() -> None:
    with pytest.raises(ValidationError):
        availability_request(status='holiday')


def test_set_availability_creates_record_with_local_times(db_session, timezone_cache) -> None:
    result = set_availability(availability_request(), context=CONTEXT, db=db_session, timezone_cache=timezone_cache)

    assert result.id is not None
    assert result.date == date(2025, 1, 15)
    assert result.notes == 'Outpatient clinic'
    assert result.entity_timezone == 'Europe/Berlin'
    assert result.local_start == '2025-01-15 09:00'
    assert result.local_end == '2025-01-15 17:00'
    assert db_session.query(DoctorAvailability).one().created_by == CONTEXT.user_id


def test_set_availability_overwrites_same_day(db_session, timezone_cache) -> None:
    set_availability(availability_request(), context=CONTEXT, db=db_session, timezone_cache=timezone_cache)

    result = set_availability(
        availability_request(status='sick_leave', break_start_datetime=None, break_end_datetime=None),
        context=CONTEXT,
        db=db_session,
        timezone_cache=timezone_cache,
    )

    assert result.status == AvailabilityStatus.SICK_LEAVE
    assert result.break_start_datetime is None
    assert db_session.query(DoctorAvailability).count() == 1


def test_set_availability_rejects_break_outside_window(db_session, timezone_cache) -> None:
    with pytest.raises(HTTPException) as exception_info:
        set_availability(
            availability_request(break_start_datetime=utc(15), break_end_datetime=utc(17)),
            context=CONTEXT,
            db=db_session,
            timezone_cache=timezone_cache,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Break must lie within the availability window.'


def test_get_availability_returns_record(db_session, add_availability, timezone_cache) -> None:
    add_availability(utc(8), utc(16))

    result = get_availability(
        doctor_id=DOCTOR_ID,
        date=date(2025, 1, 15),
        context=CONTEXT,
        db=db_session,
        timezone_cache=timezone_cache,
    )

    assert result.doctor_id == DOCTOR_ID
    assert result.start_datetime == utc(8)


def test_get_availability_returns_not_found(db_session, timezone_cache) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_availability(
            doctor_id=DOCTOR_ID,
            date=date(2025, 1, 16),
            context=CONTEXT,
            db=db_session,
            timezone_cache=timezone_cache,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Availability not found.'


def test_get_availability_rolls_back_and_logs_database_failure(
    db_session,
    timezone_cache,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    rollbacks: list[bool] = []

    def broken_get_for_date(self, doctor_id, healthcare_entity_id, day):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    monkeypatch.setattr('appointment_backend.stores.availability.AvailabilityStore.get_for_date', broken_get_for_date)
    monkeypatch.setattr(db_session, 'rollback', lambda: rollbacks.append(True))

    with pytest.raises(HTTPException) as exception_info:
        get_availability(
            doctor_id=DOCTOR_ID,
            date=date(2025, 1, 15),
            context=CONTEXT,
            db=db_session,
            timezone_cache=timezone_cache,
        )

    assert exception_info.value.status_code == 503
    assert rollbacks == [True]
    assert 'Loading availability for doctor 7 on 2025-01-15 failed' in caplog.text


def test_delete_availability_removes_the_record(db_session, add_availability) -> None:
    record = add_availability(utc(8), utc(16))

    delete_availability(availability_id=record.id, context=CONTEXT, db=db_session)

    assert db_session.query(DoctorAvailability).count() == 0

    with pytest.raises(HTTPException) as exception_info:
        delete_availability(availability_id=record.id, context=CONTEXT, db=db_session)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Availability not found.'


def test_delete_availability_is_scoped_to_entity(db_session, add_availability) -> None:
    record = add_availability(utc(8), utc(16), healthcare_entity_id=2)

    with pytest.raises(HTTPException) as exception_info:
        delete_availability(availability_id=record.id, context=CONTEXT, db=db_session)

    assert exception_info.value.status_code == 404
    assert db_session.query(DoctorAvailability).count() == 1
