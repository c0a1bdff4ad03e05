"""Canonical daily slot grid for a doctor."""

from datetime import date, timedelta
from typing import Iterable, NamedTuple

from pydantic import BaseModel, ConfigDict, computed_field

from backend.core import config
from backend.services.dates import grid_time_labels


class SlotKey(NamedTuple):
    doctor_id: int
    date: date
    time: str


class SlotData(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    doctor_id: int
    date: date
    time: str
    is_available: bool = False
    patient_limit: int = 1
    current_bookings: int = 0

    @computed_field
    @property
    def is_booked(self) -> bool:
        return self.current_bookings >= self.patient_limit

    @property
    def key(self) -> SlotKey:
        return SlotKey(self.doctor_id, self.date, self.time)


def default_slot(doctor_id: int, slot_date: date, time_label: str, patient_limit: int | None = None) -> SlotData:
    return SlotData(
        doctor_id=doctor_id,
        date=slot_date,
        time=time_label,
        is_available=False,
        patient_limit=patient_limit or config.DEFAULT_PATIENT_LIMIT,
        current_bookings=0,
    )


def build_time_slots(
    doctor_id: int,
    overrides: Iterable = (),
    days: int | None = None,
    start_date: date | None = None,
    default_limit: int | None = None,
) -> list[SlotData]:
    """Return one slot per (day, hour) cell, ordered by date then time.

    ``overrides`` are persisted slots (ORM rows or ``SlotData``); a cell whose
    date and time match an override takes its availability, limit and
    booking count. Overrides outside the grid are ignored. Other cells use
    ``default_limit``, falling back to the configured default.
    """
    days = config.SLOT_HORIZON_DAYS if days is None else days
    start_date = start_date or date.today()

    persisted = {(override.date, override.time): override for override in overrides}

    slots: list[SlotData] = []
    for offset in range(max(days, 0)):
        slot_date = start_date + timedelta(days=offset)
        for time_label in grid_time_labels():
            existing = persisted.get((slot_date, time_label))
            if existing is None:
                slots.append(default_slot(doctor_id, slot_date, time_label, default_limit))
                continue

            slots.append(
                SlotData(
                    doctor_id=doctor_id,
                    date=slot_date,
                    time=time_label,
                    is_available=bool(existing.is_available),
                    patient_limit=existing.patient_limit or config.DEFAULT_PATIENT_LIMIT,
                    current_bookings=existing.current_bookings or 0,
                )
            )

    return slots


def days_in_range(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days + 1
