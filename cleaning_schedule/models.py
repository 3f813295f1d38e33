"""
Recurrence rule persistence model
"""

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Text, Time
from sqlalchemy.sql import func

from .database import Base


class Recurrence(Base):
    """Stored recurrence rule for a repeating service visit"""

    __tablename__ = "recurrences"

    id = Column(Integer, primary_key=True, index=True)

    # Foreign identifiers (owned by the company/customer/team modules)
    company_id = Column(Integer, nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    team_id = Column(Integer, nullable=True, index=True)

    title = Column(String(255), nullable=False, default="")
    address = Column(Text, nullable=True)

    # Schedule
    frequency = Column(String(20), nullable=False)  # daily, weekly, biweekly, monthly, quarterly, yearly
    day_of_week = Column(Integer, nullable=True)  # 0=Sunday..6=Saturday
    day_of_month = Column(Integer, nullable=True)  # 1-31, clamped per month
    time_of_day = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    service_type = Column(String(20), nullable=False, default="regular")  # regular, deep, specialized
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    # Lifecycle: active → paused ↔ active; active → completed (automatic); * → cancelled
    status = Column(String(20), nullable=False, default="active", index=True)

    last_execution = Column(DateTime, nullable=True)
    next_execution = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime, nullable=True)

    __table_args__ = (Index("ix_recurrences_company_status", "company_id", "status"),)
