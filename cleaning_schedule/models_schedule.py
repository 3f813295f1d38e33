"""
Team, customer and appointment records consumed by the recurrence core.

These tables belong to the team/customer/appointment modules of the
platform; only the columns the recurrence core reads or writes are mapped.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, inactive

    appointments = relationship("Appointment", back_populates="team")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)


class Appointment(Base):
    """A durable service visit on a team's calendar"""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False)
    customer_id = Column(Integer, nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)

    # Set when the appointment was materialized from a recurrence rule
    recurrence_id = Column(Integer, nullable=True, index=True)

    title = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    service_type = Column(String(20), nullable=False, default="regular")

    start = Column(DateTime, nullable=False)
    end = Column(DateTime, nullable=False)

    # scheduled → in_progress → completed, or cancelled
    status = Column(String(20), nullable=False, default="scheduled", index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    team = relationship("Team", back_populates="appointments")

    __table_args__ = (Index("ix_appointments_team_window", "team_id", "start", "end"),)
