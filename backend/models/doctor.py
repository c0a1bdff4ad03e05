"""Doctor model definitions."""

from sqlalchemy import Column, Integer, String
from backend.database import Base


class Doctor(Base):
    """A doctor as published by the doctor-management service."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True)
    specialization = Column(String, index=True)
    default_patient_limit = Column(Integer, default=1)
