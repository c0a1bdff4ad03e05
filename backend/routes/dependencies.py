from datetime import date

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from backend.database import SessionLocal, ensure_appointment_schema, ensure_slot_schema
from backend.services.dates import normalize_date
from backend.services.errors import BookingError

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_slot_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def booking_http_error(exc: BookingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


def parse_date_param(value: str | None, field_name: str) -> date | None:
    if value is None or not value.strip():
        return None
    try:
        return normalize_date(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Invalid {field_name}.',
        ) from exc
