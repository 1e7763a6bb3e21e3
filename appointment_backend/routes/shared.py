from fastapi import HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from appointment_backend.database import SessionLocal, ensure_appointment_schema, ensure_availability_schema
from appointment_backend.scheduling.timezones import TimezoneConverterCache

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_timezone_cache(request: Request) -> TimezoneConverterCache:
    return request.app.state.timezone_cache
