"""Slot model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from backend.database import Base


class Slot(Base):
    """A bookable (doctor, date, time) cell with a patient capacity."""
    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "time", name="uq_slots_doctor_date_time"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)
    patient_limit = Column(Integer, nullable=False, default=1)
    current_bookings = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def is_booked(self) -> bool:
        return self.current_bookings >= self.patient_limit
