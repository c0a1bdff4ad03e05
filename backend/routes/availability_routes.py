from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import CallerIdentity, require_doctor
from backend.core import config
from backend.routes.dependencies import (
    booking_http_error,
    database_unavailable,
    ensure_database_ready,
    get_db,
    parse_date_param,
)
from backend.services.availability_store import AvailabilityStore, SlotUpdate
from backend.services.errors import BookingError
from backend.services.reconciler import CapacityReconciler, SlotDrift
from backend.services.slot_calendar import SlotData, days_in_range

router = APIRouter(tags=['availability'])


class BulkAvailabilityRequest(BaseModel):
    slots: list[SlotUpdate]


def resolve_date_range(start_value: str | None, end_value: str | None) -> tuple[date, date]:
    start_date = parse_date_param(start_value, 'start date') or date.today()
    end_date = parse_date_param(end_value, 'end date') or start_date + timedelta(days=config.SLOT_HORIZON_DAYS - 1)

    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='End date must not be before start date.',
        )

    if days_in_range(start_date, end_date) > config.MAX_AVAILABILITY_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Availability can be requested for at most {config.MAX_AVAILABILITY_RANGE_DAYS} days.',
        )

    return start_date, end_date


def ensure_own_schedule(identity: CallerIdentity, doctor_id: int) -> None:
    if identity.subject_id != doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only manage their own availability.',
        )


@router.get('/{doctor_id}', response_model=list[SlotData])
def get_availability(
    doctor_id: int,
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    range_start, range_end = resolve_date_range(start_date, end_date)
    ensure_database_ready()

    try:
        return AvailabilityStore(db).get_slots(doctor_id, range_start, range_end)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{doctor_id}/bulk', response_model=list[SlotData])
def bulk_update_availability(
    doctor_id: int,
    data: BulkAvailabilityRequest,
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_own_schedule(identity, doctor_id)
    ensure_database_ready()

    try:
        return AvailabilityStore(db).bulk_update(doctor_id, data.slots)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{doctor_id}/near-capacity', response_model=list[SlotData])
def list_near_capacity_slots(
    doctor_id: int,
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_own_schedule(identity, doctor_id)
    range_start, range_end = resolve_date_range(start_date, end_date)
    ensure_database_ready()

    try:
        return AvailabilityStore(db).near_capacity(doctor_id, range_start, range_end)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{doctor_id}/drift', response_model=list[SlotDrift])
def check_availability_drift(
    doctor_id: int,
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_own_schedule(identity, doctor_id)
    ensure_database_ready()

    try:
        return CapacityReconciler(db).find_drift(doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{doctor_id}/resync', response_model=list[SlotData])
def resync_availability(
    doctor_id: int,
    identity: CallerIdentity = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_own_schedule(identity, doctor_id)
    ensure_database_ready()

    try:
        return CapacityReconciler(db).resync(doctor_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
