import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_availability_schema, ensure_appointment_schema
from backend.models import activity_log, appointment, availability, doctor, notification, user  # noqa: F401
from backend.routes import appointment_routes, doctor_routes, notification_routes

config.validate_runtime_config()

app = FastAPI(title='Care Portal Scheduling API', debug=config.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'Care Portal Scheduling API Running'}


app.include_router(doctor_routes.router, prefix='/doctors')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(notification_routes.router, prefix='/notifications')
