"""Transactional entry point for reserving, cancelling and transitioning appointments.

Every mutation for a (doctor, date, time) key runs inside that key's slot
lock: re-read the slot row, check, mutate the ledger and the slot count,
commit. A failure rolls both back, so ``current_bookings`` always equals the
number of active appointments for the slot.
"""

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.appointment import CANCELLED, SCHEDULED, Appointment
from backend.services.availability_store import AvailabilityStore
from backend.services.dates import normalize_date, normalize_time_label, slot_start
from backend.services.errors import (
    DuplicateAppointmentError,
    InvalidTransitionError,
    SlotNotFoundError,
)
from backend.services.ledger import AppointmentLedger, appointment_key, check_transition
from backend.services.notifications import BookingNotifier, notifier as default_notifier
from backend.services.reconciler import CapacityReconciler, booking_delta
from backend.services.slot_calendar import SlotKey
from backend.services.slot_locks import SlotLockRegistry, slot_locks

logger = logging.getLogger(__name__)

MAX_SYMPTOMS_LENGTH = 600
DEFAULT_APPOINTMENT_TYPE = 'consultation'


class BookingDetails(BaseModel):
    appointment_type: str = DEFAULT_APPOINTMENT_TYPE
    symptoms: str | None = None

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        return normalized or DEFAULT_APPOINTMENT_TYPE

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_SYMPTOMS_LENGTH:
            raise ValueError(f'Symptoms must be {MAX_SYMPTOMS_LENGTH} characters or fewer.')

        return normalized


def make_slot_key(doctor_id: int, slot_date, slot_time) -> SlotKey:
    return SlotKey(doctor_id, normalize_date(slot_date), normalize_time_label(slot_time))


class BookingCoordinator:
    def __init__(
        self,
        db: Session,
        locks: SlotLockRegistry | None = None,
        lock_timeout: float | None = None,
        notifier: BookingNotifier | None = None,
    ):
        self.db = db
        self.locks = locks or slot_locks
        self.lock_timeout = lock_timeout
        self.notifier = notifier or default_notifier
        self.store = AvailabilityStore(db, self.locks)
        self.ledger = AppointmentLedger(db)
        self.reconciler = CapacityReconciler(db, self.locks)

    def check_duplicate(self, patient_id: int, doctor_id: int, slot_date, slot_time) -> bool:
        """Advisory only; ``book`` repeats the check under the slot lock."""
        key = make_slot_key(doctor_id, slot_date, slot_time)
        return self.ledger.find_by_patient_doctor_slot(patient_id, *key) is not None

    def book(
        self,
        doctor_id: int,
        patient_id: int,
        slot_date,
        slot_time,
        details: BookingDetails | None = None,
    ) -> Appointment:
        details = details or BookingDetails()
        key = make_slot_key(doctor_id, slot_date, slot_time)

        slot = self.store.get_slot(key)
        if slot is None or not slot.is_available:
            raise SlotNotFoundError()

        with self.locks.hold(key, self.lock_timeout):
            try:
                self.db.expire_all()
                slot_row = self.store.get_slot_row(key, for_update=True)
                if slot_row is None or not slot_row.is_available:
                    raise SlotNotFoundError()

                if self.ledger.find_by_patient_doctor_slot(patient_id, *key) is not None:
                    raise DuplicateAppointmentError()

                self.reconciler.ensure_capacity(slot_row)

                appointment = self.ledger.append(
                    Appointment(
                        doctor_id=key.doctor_id,
                        patient_id=patient_id,
                        date=key.date,
                        time=key.time,
                        appointment_type=details.appointment_type,
                        symptoms=details.symptoms,
                    ),
                    SCHEDULED,
                )
                self.reconciler.apply_transition(slot_row, None, SCHEDULED)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(appointment)

        logger.info(
            'Booked appointment %s for patient %s with doctor %s on %s %s',
            appointment.id, patient_id, key.doctor_id, key.date, key.time,
        )
        self.notifier.booking_confirmed(appointment)
        return appointment

    def cancel(self, appointment_id: int) -> Appointment:
        return self._transition(appointment_id, CANCELLED, require_active=True)

    def set_status(self, appointment_id: int, new_status: str) -> Appointment:
        return self._transition(appointment_id, new_status.strip().lower())

    def _transition(self, appointment_id: int, new_status: str, require_active: bool = False) -> Appointment:
        key = appointment_key(self.ledger.get(appointment_id))

        with self.locks.hold(key, self.lock_timeout):
            try:
                self.db.expire_all()
                appointment = self.ledger.get(appointment_id, for_update=True)
                previous = appointment.status

                if require_active and not appointment.is_active:
                    raise InvalidTransitionError(previous, new_status)
                check_transition(previous, new_status)

                if previous == new_status:
                    self.db.rollback()
                    self.db.refresh(appointment)
                    return appointment

                slot_row = self.store.get_slot_row(key, for_update=True)
                if booking_delta(previous, new_status) > 0:
                    if slot_row is None or not slot_row.is_available:
                        raise SlotNotFoundError()
                    if self.ledger.find_by_patient_doctor_slot(appointment.patient_id, *key) is not None:
                        raise DuplicateAppointmentError()
                    self.reconciler.ensure_capacity(slot_row)

                self.ledger.set_status(appointment_id, new_status)
                self.reconciler.apply_transition(slot_row, previous, new_status)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            self.db.refresh(appointment)

        logger.info('Appointment %s moved from %s to %s', appointment_id, previous, new_status)
        if new_status == CANCELLED:
            self.notifier.appointment_cancelled(appointment)
        elif new_status == SCHEDULED:
            self.notifier.booking_confirmed(appointment)
        return appointment

    def expire_no_shows(self, now: datetime | None = None, doctor_id: int | None = None) -> list[Appointment]:
        """Cancel active appointments whose slot started more than the grace period ago."""
        now = now or datetime.now()
        cutoff = now - timedelta(minutes=config.NO_SHOW_GRACE_MINUTES)

        expired: list[Appointment] = []
        for appointment in self.ledger.list_active_before(cutoff.date(), doctor_id):
            if slot_start(appointment.date, appointment.time) >= cutoff:
                continue
            appointment_id = appointment.id
            try:
                expired.append(self.cancel(appointment_id))
            except InvalidTransitionError:
                logger.info('Appointment %s changed status before it could be expired', appointment_id)

        if expired:
            logger.info('Expired %d no-show appointment(s)', len(expired))
        return expired
