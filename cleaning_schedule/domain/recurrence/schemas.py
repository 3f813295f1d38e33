"""Recurrence domain schemas - Pydantic models for the API layer"""

from datetime import date, datetime
from datetime import time as dt_time
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import time_to_ticks
from .entities import Occurrence, PagedResult, RecurrenceRule, ScheduleBatch
from .occurrences import to_naive_utc


class RecurrenceCreate(BaseModel):
    """
    Schema for creating a recurrence.

    Frequency, type, status and time are parsed by the service so that bad
    combinations are reported as invalid rules in one place. `day` is the
    dashboard's single day field, read as dayOfWeek or dayOfMonth depending
    on the frequency.
    """

    companyId: int
    customerId: int
    teamId: Optional[int] = None
    title: str = ""
    address: Optional[str] = None
    frequency: Union[int, str]
    dayOfWeek: Optional[int] = None
    dayOfMonth: Optional[int] = None
    day: Optional[int] = None
    time: Union[str, dict, dt_time] = "09:00"
    duration: int = 60
    type: Union[int, str] = "regular"
    status: Union[int, str] = "active"
    startDate: date
    endDate: Optional[date] = None
    notes: Optional[str] = None


class RecurrenceUpdate(BaseModel):
    """Schema for editing a recurrence; only fields that are sent are changed"""

    customerId: Optional[int] = None
    teamId: Optional[int] = None
    title: Optional[str] = None
    address: Optional[str] = None
    frequency: Optional[Union[int, str]] = None
    dayOfWeek: Optional[int] = None
    dayOfMonth: Optional[int] = None
    day: Optional[int] = None
    time: Optional[Union[str, dict, dt_time]] = None
    duration: Optional[int] = None
    type: Optional[Union[int, str]] = None
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    notes: Optional[str] = None


class RecurrenceResponse(BaseModel):
    id: int
    companyId: int
    customerId: int
    teamId: Optional[int]
    title: str
    address: Optional[str]
    frequency: str
    dayOfWeek: Optional[int]
    dayOfMonth: Optional[int]
    time: str
    timeTicks: int
    duration: int
    type: str
    status: str
    startDate: date
    endDate: Optional[date]
    notes: Optional[str]
    lastExecution: Optional[datetime]
    nextExecution: Optional[datetime]
    createdAt: Optional[datetime]
    updatedAt: Optional[datetime]
    cancelledAt: Optional[datetime]

    @classmethod
    def from_rule(cls, rule: RecurrenceRule) -> "RecurrenceResponse":
        return cls(
            id=rule.id,
            companyId=rule.company_id,
            customerId=rule.customer_id,
            teamId=rule.team_id,
            title=rule.title,
            address=rule.address,
            frequency=rule.frequency.value,
            dayOfWeek=rule.day_of_week,
            dayOfMonth=rule.day_of_month,
            time=rule.time_of_day.strftime("%H:%M"),
            timeTicks=time_to_ticks(rule.time_of_day),
            duration=rule.duration_minutes,
            type=rule.service_type.value,
            status=rule.status.value,
            startDate=rule.start_date,
            endDate=rule.end_date,
            notes=rule.notes,
            lastExecution=rule.last_execution,
            nextExecution=rule.next_execution,
            createdAt=rule.created_at,
            updatedAt=rule.updated_at,
            cancelledAt=rule.cancelled_at,
        )


class RecurrenceListResponse(BaseModel):
    """Page envelope matching the dashboard's paged responses"""

    results: list[RecurrenceResponse]
    currentPage: int
    pageCount: int
    pageSize: int
    totalItems: int
    firstRowOnPage: int
    lastRowOnPage: int

    @classmethod
    def from_page(cls, page: PagedResult) -> "RecurrenceListResponse":
        return cls(
            results=[RecurrenceResponse.from_rule(r) for r in page.results],
            currentPage=page.current_page,
            pageCount=page.page_count,
            pageSize=page.page_size,
            totalItems=page.total_items,
            firstRowOnPage=page.first_row_on_page,
            lastRowOnPage=page.last_row_on_page,
        )


class OccurrenceResponse(BaseModel):
    ruleId: int
    scheduledStart: datetime
    scheduledEnd: datetime

    @classmethod
    def from_occurrence(cls, occurrence: Occurrence) -> "OccurrenceResponse":
        return cls(
            ruleId=occurrence.rule_id,
            scheduledStart=occurrence.scheduled_start,
            scheduledEnd=occurrence.scheduled_end,
        )


class ScheduledAppointment(OccurrenceResponse):
    appointmentId: int


class ConflictResponse(BaseModel):
    scheduledStart: datetime
    scheduledEnd: datetime
    conflictingAppointmentId: Optional[int] = None
    stale: bool = False
    message: str


class ScheduleWindowRequest(BaseModel):
    windowStart: datetime
    windowEnd: datetime

    @field_validator("windowStart", "windowEnd")
    @classmethod
    def validate_window(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class ScheduleBatchResponse(BaseModel):
    scheduled: list[ScheduledAppointment]
    skipped: list[OccurrenceResponse]
    conflicts: list[ConflictResponse]

    @classmethod
    def from_batch(cls, batch: ScheduleBatch) -> "ScheduleBatchResponse":
        return cls(
            scheduled=[
                ScheduledAppointment(
                    ruleId=occurrence.rule_id,
                    scheduledStart=occurrence.scheduled_start,
                    scheduledEnd=occurrence.scheduled_end,
                    appointmentId=appointment_id,
                )
                for occurrence, appointment_id in batch.scheduled
            ],
            skipped=[OccurrenceResponse.from_occurrence(o) for o in batch.skipped],
            conflicts=[
                ConflictResponse(
                    scheduledStart=error.occurrence.scheduled_start,
                    scheduledEnd=error.occurrence.scheduled_end,
                    conflictingAppointmentId=(
                        error.conflicting.appointment_id if error.conflicting else None
                    ),
                    stale=error.stale,
                    message=error.message,
                )
                for error in batch.conflicts
            ],
        )


class ExecutionRequest(BaseModel):
    occurrenceTime: datetime = Field(..., description="Scheduled start of the completed visit")

    @field_validator("occurrenceTime")
    @classmethod
    def validate_occurrence_time(cls, v: datetime) -> datetime:
        return to_naive_utc(v)
