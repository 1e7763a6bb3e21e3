import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from appointment_backend.core import config
from appointment_backend.database import engine, ensure_availability_schema, ensure_appointment_schema
from appointment_backend.models import appointment, availability
from appointment_backend.routes import appointment_routes, availability_routes
from appointment_backend.scheduling.timezones import EntityTimezoneLookup, TimezoneConverterCache


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


configure_logging()

app = FastAPI(title='Appointment Scheduling Service', debug=config.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_service() -> None:
    config.validate_runtime_config()
    app.state.timezone_cache = TimezoneConverterCache(EntityTimezoneLookup())

    try:
        appointment.Base.metadata.create_all(bind=engine)
        availability.Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('shutdown')
def close_clients() -> None:
    timezone_cache = getattr(app.state, 'timezone_cache', None)
    if timezone_cache is not None:
        timezone_cache.lookup.close()


@app.get('/')
def root():
    return {'status': 'Appointment Scheduling API Running'}


app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(availability_routes.router, prefix='/availability')
