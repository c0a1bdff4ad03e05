from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.doctor import Doctor
from backend.routes.dependencies import database_unavailable, ensure_database_ready, get_db, parse_date_param
from backend.services.availability_store import AvailabilityStore
from backend.services.slot_calendar import SlotData

router = APIRouter(tags=['doctors'])


class DoctorAvailabilityResponse(BaseModel):
    id: int
    name: str
    specialization: str | None = None
    open_slots: list[SlotData]


@router.get('', response_model=list[DoctorAvailabilityResponse])
def find_doctors(
    specialization: str | None = Query(default=None),
    on_date: str | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    requested_date = parse_date_param(on_date, 'date')
    ensure_database_ready()

    try:
        query = db.query(Doctor)
        normalized_specialization = (specialization or '').strip().lower()
        if normalized_specialization:
            query = query.filter(func.lower(Doctor.specialization) == normalized_specialization)
        doctors = query.order_by(Doctor.name.asc(), Doctor.id.asc()).all()

        if requested_date is not None:
            range_start = range_end = requested_date
        else:
            range_start = date.today()
            range_end = range_start + timedelta(days=config.SLOT_HORIZON_DAYS - 1)

        store = AvailabilityStore(db)
        results: list[DoctorAvailabilityResponse] = []
        for doctor in doctors:
            open_slots = store.open_slots(doctor.id, range_start, range_end)
            if requested_date is not None and not open_slots:
                continue
            results.append(
                DoctorAvailabilityResponse(
                    id=doctor.id,
                    name=doctor.name,
                    specialization=doctor.specialization,
                    open_slots=open_slots,
                )
            )

        return results
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
