from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import (
    DOCTOR_ROLE,
    CallerIdentity,
    get_current_identity,
    require_doctor,
    require_patient,
    require_verified_patient,
)
from backend.models.appointment import (
    ACTIVE_STATUSES,
    APPOINTMENT_STATUSES,
    CANCELLED,
    COMPLETED,
    Appointment,
)
from backend.routes.dependencies import (
    booking_http_error,
    database_unavailable,
    ensure_database_ready,
    get_db,
)
from backend.services.booking import BookingCoordinator, BookingDetails
from backend.services.dates import normalize_date, normalize_time_label
from backend.services.errors import BookingError
from backend.services.ledger import AppointmentLedger

router = APIRouter(tags=['appointments'])


class SlotSelection(BaseModel):
    doctor_id: int
    date: date
    time: str

    @field_validator('date', mode='before')
    @classmethod
    def validate_date(cls, value) -> date:
        return normalize_date(value)

    @field_validator('time', mode='before')
    @classmethod
    def validate_time(cls, value) -> str:
        return normalize_time_label(value)


class BookAppointmentRequest(SlotSelection, BookingDetails):
    pass


class DuplicateCheckResponse(BaseModel):
    is_duplicate: bool


class StatusUpdateRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    patient_id: int
    date: date
    time: str
    appointment_type: str | None = None
    symptoms: str | None = None
    status: str
    created_at: datetime | None = None


class PatientAppointmentsResponse(BaseModel):
    upcoming: list[AppointmentResponse]
    previous: list[AppointmentResponse]


class DoctorStatsResponse(BaseModel):
    total: int
    active: int
    completed: int
    cancelled: int
    today: int


class StatusChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: str | None = None
    to_status: str
    changed_at: datetime | None = None


def split_patient_appointments(
    appointments: list[Appointment],
    today: date,
) -> PatientAppointmentsResponse:
    upcoming = [
        appointment for appointment in appointments
        if appointment.date >= today and appointment.status in ACTIVE_STATUSES
    ]
    previous = [
        appointment for appointment in appointments
        if appointment.date < today or appointment.status not in ACTIVE_STATUSES
    ]
    upcoming.sort(key=lambda appointment: (appointment.date, appointment.time))
    previous.sort(key=lambda appointment: (appointment.date, appointment.time), reverse=True)

    return PatientAppointmentsResponse(
        upcoming=[AppointmentResponse.model_validate(appointment) for appointment in upcoming],
        previous=[AppointmentResponse.model_validate(appointment) for appointment in previous],
    )


def summarize_doctor_appointments(appointments: list[Appointment], today: date) -> DoctorStatsResponse:
    return DoctorStatsResponse(
        total=len(appointments),
        active=sum(1 for appointment in appointments if appointment.status in ACTIVE_STATUSES),
        completed=sum(1 for appointment in appointments if appointment.status == COMPLETED),
        cancelled=sum(1 for appointment in appointments if appointment.status == CANCELLED),
        today=sum(
            1 for appointment in appointments
            if appointment.date == today and appointment.status in ACTIVE_STATUSES
        ),
    )


def load_authorized_appointment(db: Session, appointment_id: int, identity: CallerIdentity) -> Appointment:
    try:
        appointment = AppointmentLedger(db).get(appointment_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc

    if identity.role == DOCTOR_ROLE:
        allowed = appointment.doctor_id == identity.subject_id
    else:
        allowed = appointment.patient_id == identity.subject_id

    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the patient or doctor on this appointment can access it.',
        )

    return appointment


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    identity: CallerIdentity = Depends(require_verified_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return BookingCoordinator(db).book(
            data.doctor_id,
            identity.subject_id,
            data.date,
            data.time,
            BookingDetails(appointment_type=data.appointment_type, symptoms=data.symptoms),
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('', response_model=PatientAppointmentsResponse)
def list_my_appointments(
    identity: CallerIdentity = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = AppointmentLedger(db).list_for_patient(identity.subject_id)
        return split_patient_appointments(appointments, date.today())
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctor', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    normalized_status = status_filter.strip().lower() if status_filter else None
    if normalized_status is not None and normalized_status not in APPOINTMENT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid appointment status.',
        )

    ensure_database_ready()

    try:
        return AppointmentLedger(db).list_for_doctor(identity.subject_id, normalized_status)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctor/stats', response_model=DoctorStatsResponse)
def get_doctor_stats(
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = AppointmentLedger(db).list_for_doctor(identity.subject_id)
        return summarize_doctor_appointments(appointments, date.today())
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/check-duplicate', response_model=DuplicateCheckResponse)
def check_duplicate_appointment(
    data: SlotSelection,
    identity: CallerIdentity = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        is_duplicate = BookingCoordinator(db).check_duplicate(
            identity.subject_id,
            data.doctor_id,
            data.date,
            data.time,
        )
        return DuplicateCheckResponse(is_duplicate=is_duplicate)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/expire-no-shows', response_model=list[AppointmentResponse])
def expire_no_shows(
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return BookingCoordinator(db).expire_no_shows(doctor_id=identity.subject_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    identity: CallerIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        load_authorized_appointment(db, appointment_id, identity)
        return BookingCoordinator(db).cancel(appointment_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdateRequest,
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        load_authorized_appointment(db, appointment_id, identity)
        return BookingCoordinator(db).set_status(appointment_id, data.status)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}/history', response_model=list[StatusChangeResponse])
def get_appointment_history(
    appointment_id: int,
    identity: CallerIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        load_authorized_appointment(db, appointment_id, identity)
        return AppointmentLedger(db).history(appointment_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
