"""
Conflict checking of candidate occurrences against a team's calendar.

Conflicts are never resolved here: a double-booking must surface to the
caller as a ConflictError so someone decides what happens to the visit.

The check and the later write are separated in time, so `verify` re-reads
the calendar right before the caller commits. If anything now overlaps the
candidate that the snapshot did not contain, the check is stale
and the caller must re-check.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from .entities import BusyInterval, Occurrence
from .exceptions import ConflictError
from .interfaces import TeamCalendarProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarSnapshot:
    team_id: int
    window_start: datetime
    window_end: datetime
    intervals: tuple

    def overlapping(self, start: datetime, end: datetime) -> frozenset:
        return frozenset(i for i in self.intervals if i.overlaps(start, end))


@dataclass(frozen=True)
class ConflictCheck:
    occurrence: Occurrence
    team_id: Optional[int]
    snapshot: Optional[CalendarSnapshot]
    conflict: Optional[BusyInterval] = None
    duplicate: bool = False  # the calendar already holds this very occurrence

    @property
    def accepted(self) -> bool:
        return self.conflict is None and not self.duplicate

    def to_error(self) -> ConflictError:
        return ConflictError(self.occurrence, self.team_id, self.conflict)


class ConflictChecker:
    def __init__(self, calendar: TeamCalendarProvider):
        self.calendar = calendar

    def snapshot(self, team_id: int, window_start: datetime, window_end: datetime) -> CalendarSnapshot:
        intervals = self.calendar.appointments_for(team_id, window_start, window_end)
        ordered = sorted(
            (i for i in intervals if i.overlaps(window_start, window_end)),
            key=lambda i: (i.start, i.end, i.appointment_id),
        )
        return CalendarSnapshot(team_id, window_start, window_end, tuple(ordered))

    def check(self, occurrence: Occurrence, team_id: Optional[int]) -> ConflictCheck:
        """Check one candidate against a fresh read of the team's calendar"""
        if team_id is None:
            return ConflictCheck(occurrence, None, None)
        snap = self.snapshot(team_id, occurrence.scheduled_start, occurrence.scheduled_end)
        return self._evaluate(occurrence, team_id, snap)

    def check_all(self, occurrences: Iterable[Occurrence], team_id: Optional[int]) -> list[ConflictCheck]:
        """Check a batch against one calendar read covering all candidates"""
        occurrences = list(occurrences)
        if not occurrences:
            return []
        if team_id is None:
            return [ConflictCheck(o, None, None) for o in occurrences]

        window_start = min(o.scheduled_start for o in occurrences)
        window_end = max(o.scheduled_end for o in occurrences)
        snap = self.snapshot(team_id, window_start, window_end)
        return [self._evaluate(o, team_id, snap) for o in occurrences]

    def verify(self, check: ConflictCheck) -> None:
        """
        Re-check a candidate immediately before it is committed.

        Raises:
            ConflictError: stale=True when the calendar changed under the
                candidate since the snapshot, otherwise when the check
                itself found a conflict
        """
        if check.snapshot is None:
            return

        occurrence = check.occurrence
        start, end = occurrence.scheduled_start, occurrence.scheduled_end
        fresh = frozenset(
            i for i in self.calendar.appointments_for(check.team_id, start, end) if i.overlaps(start, end)
        )
        if fresh != check.snapshot.overlapping(start, end):
            logger.warning(
                f"🔄 Calendar for team {check.team_id} changed under {start.isoformat()} before commit"
            )
            raise ConflictError(occurrence, check.team_id, stale=True)

        if check.conflict is not None:
            raise check.to_error()

    @staticmethod
    def _evaluate(occurrence: Occurrence, team_id: int, snap: CalendarSnapshot) -> ConflictCheck:
        overlapping = sorted(
            snap.overlapping(occurrence.scheduled_start, occurrence.scheduled_end),
            key=lambda i: (i.start, i.appointment_id),
        )
        if not overlapping:
            return ConflictCheck(occurrence, team_id, snap)

        for interval in overlapping:
            if (
                occurrence.rule_id is not None
                and interval.recurrence_id == occurrence.rule_id
                and interval.start == occurrence.scheduled_start
            ):
                return ConflictCheck(occurrence, team_id, snap, duplicate=True)

        return ConflictCheck(occurrence, team_id, snap, conflict=overlapping[0])
