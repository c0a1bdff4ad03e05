import logging
from datetime import date
from typing import Iterable

from pydantic import BaseModel, field_validator
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.doctor import Doctor
from backend.models.slot import Slot
from backend.services.dates import is_grid_time, normalize_date, normalize_time_label
from backend.services.errors import InvalidCapacityError, SlotInUseError
from backend.services.slot_calendar import SlotData, SlotKey, build_time_slots, days_in_range
from backend.services.slot_locks import SlotLockRegistry, slot_locks

logger = logging.getLogger(__name__)


class SlotUpdate(BaseModel):
    """A doctor's desired policy for one slot; booking counts are never client-supplied.

    An omitted ``patient_limit`` keeps the slot's stored limit.
    """

    date: date
    time: str
    is_available: bool
    patient_limit: int | None = None

    @field_validator('date', mode='before')
    @classmethod
    def validate_date(cls, value) -> date:
        return normalize_date(value)

    @field_validator('time', mode='before')
    @classmethod
    def validate_time(cls, value) -> str:
        label = normalize_time_label(value)
        if not is_grid_time(label):
            raise ValueError(
                f'Slots start on the hour between {config.DAY_START_HOUR:02d}:00 and {config.DAY_END_HOUR:02d}:00.'
            )
        return label


class AvailabilityStore:
    """Authoritative slot state per doctor.

    Appointment-driven count changes go through the booking coordinator;
    this class only owns doctor-driven policy updates and reads.
    """

    def __init__(self, db: Session, locks: SlotLockRegistry | None = None):
        self.db = db
        self.locks = locks or slot_locks

    def default_patient_limit(self, doctor_id: int) -> int:
        limit = self.db.query(Doctor.default_patient_limit).filter(Doctor.id == doctor_id).scalar()
        if limit is None or limit < 1 or limit > config.MAX_PATIENT_LIMIT:
            return config.DEFAULT_PATIENT_LIMIT
        return limit

    def get_slot_row(self, key: SlotKey, for_update: bool = False) -> Slot | None:
        query = self.db.query(Slot).filter(
            Slot.doctor_id == key.doctor_id,
            Slot.date == key.date,
            Slot.time == key.time,
        )
        if for_update:
            query = query.populate_existing().with_for_update()
        return query.first()

    def get_or_create_slot_row(self, key: SlotKey, is_available: bool = False) -> Slot:
        row = self.get_slot_row(key, for_update=True)
        if row is None:
            row = Slot(
                doctor_id=key.doctor_id,
                date=key.date,
                time=key.time,
                is_available=is_available,
                patient_limit=self.default_patient_limit(key.doctor_id),
                current_bookings=0,
            )
            self.db.add(row)
            self.db.flush()
        return row

    def list_slot_rows(self, doctor_id: int, start_date: date | None = None, end_date: date | None = None) -> list[Slot]:
        query = self.db.query(Slot).filter(Slot.doctor_id == doctor_id)
        if start_date is not None:
            query = query.filter(Slot.date >= start_date)
        if end_date is not None:
            query = query.filter(Slot.date <= end_date)
        return query.order_by(Slot.date.asc(), Slot.time.asc()).all()

    def get_slot(self, key: SlotKey) -> SlotData | None:
        row = self.get_slot_row(key)
        return SlotData.model_validate(row) if row is not None else None

    def get_slots(self, doctor_id: int, start_date: date, end_date: date) -> list[SlotData]:
        """Every grid cell in the range; cells with no stored row use the defaults."""
        if end_date < start_date:
            return []

        rows = self.list_slot_rows(doctor_id, start_date, end_date)
        return build_time_slots(
            doctor_id,
            overrides=rows,
            days=days_in_range(start_date, end_date),
            start_date=start_date,
            default_limit=self.default_patient_limit(doctor_id),
        )

    def open_slots(self, doctor_id: int, start_date: date, end_date: date) -> list[SlotData]:
        return [
            slot
            for slot in self.get_slots(doctor_id, start_date, end_date)
            if slot.is_available and not slot.is_booked
        ]

    def near_capacity(self, doctor_id: int, start_date: date, end_date: date) -> list[SlotData]:
        slots = [
            SlotData.model_validate(row)
            for row in self.list_slot_rows(doctor_id, start_date, end_date)
            if row.current_bookings > 0
            and row.current_bookings >= row.patient_limit * config.NEAR_CAPACITY_RATIO
        ]
        return sorted(slots, key=lambda slot: (-slot.current_bookings, slot.date, slot.time))

    def bulk_update(self, doctor_id: int, updates: Iterable[SlotUpdate]) -> list[SlotData]:
        """Apply slot policy changes all-or-nothing.

        Raises InvalidCapacityError when a limit is out of range or below the
        slot's bookings, SlotInUseError when withdrawing a booked slot.
        """
        requested: dict[SlotKey, SlotUpdate] = {}
        for update in updates:
            requested[SlotKey(doctor_id, update.date, update.time)] = update

        if not requested:
            return []

        with self.locks.hold_many(requested):
            try:
                self.db.expire_all()
                rows = {
                    (row.date, row.time): row
                    for row in self.db.query(Slot)
                    .filter(
                        Slot.doctor_id == doctor_id,
                        or_(*(and_(Slot.date == key.date, Slot.time == key.time) for key in sorted(requested))),
                    )
                    .with_for_update()
                    .all()
                }
                default_limit = self.default_patient_limit(doctor_id)

                limits: dict[SlotKey, int] = {}
                for key, update in requested.items():
                    row = rows.get((key.date, key.time))
                    if update.patient_limit is not None:
                        limits[key] = update.patient_limit
                    elif row is not None:
                        limits[key] = row.patient_limit
                    else:
                        limits[key] = default_limit
                    self._check_policy(key, update, limits[key], row)

                applied: list[Slot] = []
                for key, update in sorted(requested.items()):
                    row = rows.get((key.date, key.time))
                    if row is None:
                        row = Slot(doctor_id=doctor_id, date=key.date, time=key.time, current_bookings=0)
                        self.db.add(row)
                    row.is_available = update.is_available
                    row.patient_limit = limits[key]
                    applied.append(row)

                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            result = [SlotData.model_validate(row) for row in applied]

        logger.info('Doctor %s updated %d slot(s)', doctor_id, len(result))
        return result

    def _check_policy(self, key: SlotKey, update: SlotUpdate, patient_limit: int, row: Slot | None) -> None:
        current_bookings = row.current_bookings if row is not None else 0

        if patient_limit < 1 or patient_limit > config.MAX_PATIENT_LIMIT:
            raise InvalidCapacityError(
                f'Patient limit for {key.date} {key.time} must be between 1 and {config.MAX_PATIENT_LIMIT}.'
            )
        if patient_limit < current_bookings:
            raise InvalidCapacityError(
                f'Patient limit for {key.date} {key.time} cannot be lower than its '
                f'{current_bookings} current booking(s).'
            )
        if row is not None and row.is_available and not update.is_available and current_bookings > 0:
            raise SlotInUseError(
                f'Cannot withdraw {key.date} {key.time}: it has {current_bookings} active booking(s).'
            )
