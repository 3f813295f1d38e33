"""Collaborator interfaces the recurrence core depends on"""

from datetime import datetime
from typing import Optional, Protocol

from .entities import BusyInterval, Occurrence, PagedResult, Pagination, RecurrenceRule, RuleFilters


class RecurrenceRepository(Protocol):
    def save(self, rule: RecurrenceRule) -> RecurrenceRule:
        """Insert or update; returns the stored rule with its id and timestamps"""
        ...

    def find_by_id(self, rule_id: int) -> Optional[RecurrenceRule]: ...

    def list_active(self) -> list[RecurrenceRule]: ...

    def list(self, filters: RuleFilters, pagination: Pagination) -> PagedResult: ...

    def delete(self, rule: RecurrenceRule) -> RecurrenceRule:
        """Soft delete: persists the cancelled rule, the record is kept"""
        ...


class TeamCalendarProvider(Protocol):
    def appointments_for(
        self, team_id: int, window_start: datetime, window_end: datetime
    ) -> list[BusyInterval]:
        """Existing, non-cancelled commitments of a team intersecting the window"""
        ...


class AppointmentFactory(Protocol):
    def materialize(self, occurrence: Occurrence, rule: RecurrenceRule) -> int:
        """Create a durable appointment for an occurrence; returns its id"""
        ...


class Directory(Protocol):
    def team_exists(self, team_id: int) -> bool: ...

    def customer_exists(self, customer_id: int) -> bool: ...
