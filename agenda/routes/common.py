import logging
from typing import NoReturn

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.core.errors import (
    BookingError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StateError,
    ValidationError,
)
from agenda.models.user import ROLE_ADMIN, User
from agenda.services.appointment_service import AppointmentService
from agenda.services.notifications import SmtpNotificationGateway

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
)


def build_service(db: Session) -> AppointmentService:
    def resolve_email(user_id: int) -> str | None:
        user = db.query(User).filter(User.id == user_id).first()
        return user.email if user else None

    return AppointmentService(db, notifier=SmtpNotificationGateway(resolve_email))


def raise_http_error(exc: Exception) -> NoReturn:
    if isinstance(exc, BookingError):
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                raise HTTPException(
                    status_code=status_code,
                    detail={'code': exc.code, 'message': exc.message},
                ) from exc
    if isinstance(exc, SQLAlchemyError):
        logger.exception('Database error while handling booking request')
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
    raise exc


def require_self_or_admin(current_user: User, user_id: int, detail: str) -> None:
    if current_user.role == ROLE_ADMIN or current_user.id == user_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
