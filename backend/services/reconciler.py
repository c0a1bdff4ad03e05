"""Keeps slot booking counts consistent with the appointment ledger.

The steady-state path translates each applied status edge into a +1/-1
delta on the slot. The resync pass rebuilds counts from the ledger and is
the only self-healing mechanism; it is safe to run any number of times.
"""

import logging
from datetime import date

from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.models.appointment import ACTIVE_STATUSES
from backend.models.slot import Slot
from backend.services.availability_store import AvailabilityStore
from backend.services.errors import SlotFullError
from backend.services.ledger import AppointmentLedger
from backend.services.slot_calendar import SlotData, SlotKey
from backend.services.slot_locks import SlotLockRegistry, slot_locks

logger = logging.getLogger(__name__)


class SlotDrift(BaseModel):
    date: date
    time: str
    recorded: int
    expected: int


def booking_delta(from_status: str | None, to_status: str) -> int:
    return int(to_status in ACTIVE_STATUSES) - int(from_status in ACTIVE_STATUSES)


class CapacityReconciler:
    def __init__(self, db: Session, locks: SlotLockRegistry | None = None):
        self.db = db
        self.locks = locks or slot_locks
        self.store = AvailabilityStore(db, self.locks)
        self.ledger = AppointmentLedger(db)

    def ensure_capacity(self, slot: Slot | None) -> None:
        if slot is None or slot.current_bookings >= slot.patient_limit:
            raise SlotFullError()

    def apply_transition(self, slot: Slot | None, from_status: str | None, to_status: str) -> int:
        """Adjust ``slot`` for one status edge; the caller holds the slot lock and commits."""
        delta = booking_delta(from_status, to_status)
        if delta == 0:
            return 0

        if delta > 0:
            self.ensure_capacity(slot)
            slot.current_bookings += 1
        elif slot is None:
            logger.warning('No slot row found while releasing a booking (%s -> %s)', from_status, to_status)
        else:
            slot.current_bookings = max(0, slot.current_bookings - 1)

        return delta

    def _tracked_keys(self, doctor_id: int, expected: dict[SlotKey, int]) -> list[SlotKey]:
        keys = set(expected)
        keys.update(
            SlotKey(doctor_id, row.date, row.time)
            for row in self.store.list_slot_rows(doctor_id)
        )
        return sorted(keys)

    def find_drift(self, doctor_id: int) -> list[SlotDrift]:
        """Report slots whose recorded count disagrees with the ledger. No mutation."""
        expected = self.ledger.count_active_by_slot(doctor_id)
        recorded = {
            SlotKey(doctor_id, row.date, row.time): row.current_bookings
            for row in self.store.list_slot_rows(doctor_id)
        }

        drift = [
            SlotDrift(date=key.date, time=key.time, recorded=recorded.get(key, 0), expected=expected.get(key, 0))
            for key in self._tracked_keys(doctor_id, expected)
            if recorded.get(key, 0) != expected.get(key, 0)
        ]
        for item in drift:
            logger.warning(
                'Slot drift for doctor %s at %s %s: recorded %d, expected %d',
                doctor_id, item.date, item.time, item.recorded, item.expected,
            )
        return drift

    def resync(self, doctor_id: int) -> list[SlotData]:
        """Recompute every slot's booking count from active appointments.

        Returns the slots that were corrected; a second run returns nothing.
        """
        corrected: list[SlotData] = []

        for key in self._tracked_keys(doctor_id, self.ledger.count_active_by_slot(doctor_id)):
            with self.locks.hold(key):
                try:
                    self.db.expire_all()
                    expected = len(self.ledger.find_active_by_doctor_slot(key.doctor_id, key.date, key.time))
                    row = self.store.get_slot_row(key, for_update=True)
                    if row is None:
                        if expected == 0:
                            self.db.rollback()
                            continue
                        row = self.store.get_or_create_slot_row(key)

                    if row.current_bookings == expected and row.patient_limit >= expected:
                        self.db.rollback()
                        continue

                    if expected > row.patient_limit:
                        logger.warning(
                            'Raising patient limit for doctor %s at %s %s from %d to %d to cover active bookings',
                            doctor_id, key.date, key.time, row.patient_limit, expected,
                        )
                        row.patient_limit = expected

                    logger.info(
                        'Resync doctor %s at %s %s: %d -> %d booking(s)',
                        doctor_id, key.date, key.time, row.current_bookings, expected,
                    )
                    row.current_bookings = expected
                    self.db.commit()
                    corrected.append(SlotData.model_validate(row))
                except Exception:
                    self.db.rollback()
                    raise

        return corrected
