"""Appointment records and their status history."""

from datetime import date, datetime

from sqlalchemy.orm import Session

from backend.models.appointment import (
    ACTIVE_STATUSES,
    APPOINTMENT_STATUSES,
    CANCELLED,
    COMPLETED,
    PENDING,
    SCHEDULED,
    Appointment,
    AppointmentStatusChange,
)
from backend.services.errors import AppointmentNotFoundError, InvalidTransitionError
from backend.services.slot_calendar import SlotKey

# Allowed status edges. Same-status edges listed here are no-ops.
ALLOWED_TRANSITIONS = {
    PENDING: {COMPLETED, CANCELLED},
    SCHEDULED: {COMPLETED, CANCELLED},
    CANCELLED: {SCHEDULED, CANCELLED},
    COMPLETED: {COMPLETED},
}


def check_transition(from_status: str, to_status: str) -> None:
    if to_status not in APPOINTMENT_STATUSES:
        raise InvalidTransitionError(from_status, to_status, f'Unknown appointment status: {to_status}.')
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
        raise InvalidTransitionError(from_status, to_status)


def appointment_key(appointment: Appointment) -> SlotKey:
    return SlotKey(appointment.doctor_id, appointment.date, appointment.time)


class AppointmentLedger:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int, for_update: bool = False) -> Appointment:
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.populate_existing().with_for_update()
        appointment = query.first()
        if appointment is None:
            raise AppointmentNotFoundError()
        return appointment

    def find_active_by_doctor_slot(self, doctor_id: int, slot_date: date, slot_time: str) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == slot_date,
            Appointment.time == slot_time,
            Appointment.status.in_(ACTIVE_STATUSES),
        ).order_by(Appointment.id.asc()).all()

    def find_by_patient_doctor_slot(
        self,
        patient_id: int,
        doctor_id: int,
        slot_date: date,
        slot_time: str,
    ) -> Appointment | None:
        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.doctor_id == doctor_id,
            Appointment.date == slot_date,
            Appointment.time == slot_time,
            Appointment.status.in_(ACTIVE_STATUSES),
        ).first()

    def count_active_by_slot(self, doctor_id: int) -> dict[SlotKey, int]:
        counts: dict[SlotKey, int] = {}
        rows = self.db.query(Appointment.date, Appointment.time).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_STATUSES),
        ).all()
        for slot_date, slot_time in rows:
            key = SlotKey(doctor_id, slot_date, slot_time)
            counts[key] = counts.get(key, 0) + 1
        return counts

    def append(self, appointment: Appointment, status: str = SCHEDULED) -> Appointment:
        """Store a new appointment and record its initial status. Does not commit."""
        appointment.status = status
        self.db.add(appointment)
        self.db.flush()
        self._record(appointment, None, status)
        return appointment

    def set_status(self, appointment_id: int, new_status: str) -> Appointment:
        """Apply a validated transition. Does not commit and never touches slots."""
        appointment = self.get(appointment_id)
        previous = appointment.status
        check_transition(previous, new_status)
        if previous == new_status:
            return appointment

        appointment.status = new_status
        appointment.updated_at = datetime.now()
        self._record(appointment, previous, new_status)
        self.db.flush()
        return appointment

    def history(self, appointment_id: int) -> list[AppointmentStatusChange]:
        self.get(appointment_id)
        return self.db.query(AppointmentStatusChange).filter(
            AppointmentStatusChange.appointment_id == appointment_id,
        ).order_by(AppointmentStatusChange.id.asc()).all()

    def list_for_patient(self, patient_id: int) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
        ).order_by(Appointment.date.asc(), Appointment.time.asc()).all()

    def list_for_doctor(self, doctor_id: int, status: str | None = None) -> list[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.date.asc(), Appointment.time.asc(), Appointment.id.asc()).all()

    def list_active_before(self, cutoff_date: date, doctor_id: int | None = None) -> list[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.date <= cutoff_date,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        return query.order_by(Appointment.date.asc(), Appointment.time.asc()).all()

    def _record(self, appointment: Appointment, from_status: str | None, to_status: str) -> None:
        self.db.add(
            AppointmentStatusChange(
                appointment_id=appointment.id,
                from_status=from_status,
                to_status=to_status,
            )
        )
