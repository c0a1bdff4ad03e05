"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from backend.database import Base

PENDING = "pending"
SCHEDULED = "scheduled"
COMPLETED = "completed"
CANCELLED = "cancelled"

APPOINTMENT_STATUSES = (PENDING, SCHEDULED, COMPLETED, CANCELLED)
ACTIVE_STATUSES = frozenset({PENDING, SCHEDULED})


class Appointment(Base):
    """A patient's reservation of one doctor slot."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)
    appointment_type = Column(String, default="consultation")
    symptoms = Column(String)
    status = Column(String, nullable=False, default=SCHEDULED)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    status_changes = relationship(
        "AppointmentStatusChange",
        back_populates="appointment",
        order_by="AppointmentStatusChange.id",
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class AppointmentStatusChange(Base):
    """One entry of an appointment's status history."""
    __tablename__ = "appointment_status_changes"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    from_status = Column(String)
    to_status = Column(String, nullable=False)
    changed_at = Column(DateTime, default=datetime.now)

    appointment = relationship("Appointment", back_populates="status_changes")
