from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import ensure_appointment_schema, ensure_availability_schema
from backend.scheduling.booking import BookingService
from backend.scheduling.domain import Actor, BookingRejection, RejectionReason, Role
from backend.scheduling.errors import (
    InvalidTransitionError,
    LeadTimeViolationError,
    ModalityUnsupportedError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    SchedulingError,
    SlotUnavailableError,
)
from backend.scheduling.notifications import NotificationService
from backend.scheduling.store import SchedulingStore

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'

ERROR_STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ModalityUnsupportedError: status.HTTP_400_BAD_REQUEST,
    LeadTimeViolationError: status.HTTP_400_BAD_REQUEST,
    SlotUnavailableError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

REJECTION_STATUS_CODES = {
    RejectionReason.DOCTOR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.MODALITY_UNSUPPORTED: status.HTTP_400_BAD_REQUEST,
    RejectionReason.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    RejectionReason.LEAD_TIME_VIOLATION: status.HTTP_400_BAD_REQUEST,
}


def current_time() -> datetime:
    return datetime.now()


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def build_booking_service(db: Session) -> BookingService:
    store = SchedulingStore(db)
    return BookingService(store, NotificationService(store), clock=current_time)


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)

    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)

    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


def rejection_to_http_exception(rejection: BookingRejection) -> HTTPException:
    return HTTPException(
        status_code=REJECTION_STATUS_CODES[rejection.reason],
        detail={
            'reason': rejection.reason.value,
            'message': rejection.message,
            'refresh_slots': rejection.refresh_slots,
        },
    )


def require_role(actor: Actor, *roles: Role, detail: str) -> None:
    if actor.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
