"""Recurrence service - orchestrates rules, occurrences, conflicts and execution tracking"""

import dataclasses
import logging
from datetime import datetime
from typing import Callable, Optional

from ...config import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    RECURRENCE_CONFLICT_RETRIES,
    RECURRENCE_MAX_OCCURRENCES,
)
from ...locks import RuleLockManager, rule_key, team_key
from ...shared.validators import (
    clean_text,
    parse_frequency,
    parse_service_type,
    parse_status,
    parse_time_of_day,
)
from .conflicts import ConflictCheck, ConflictChecker
from .entities import (
    Frequency,
    Occurrence,
    PagedResult,
    Pagination,
    RecurrenceRule,
    RuleFilters,
    RuleStatus,
    ScheduleBatch,
)
from .exceptions import (
    ConflictError,
    InvalidRuleError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
)
from .interfaces import AppointmentFactory, Directory, RecurrenceRepository, TeamCalendarProvider
from .lifecycle import LifecycleManager
from .occurrences import Bound, first_occurrence, generate, next_occurrence, to_window_bound, validate_schedule
from .schemas import RecurrenceCreate, RecurrenceUpdate
from .tracker import ExecutionTracker

logger = logging.getLogger(__name__)

# Entity attributes that shape the series; editing one re-derives next_execution
SCHEDULE_FIELDS = (
    "frequency",
    "day_of_week",
    "day_of_month",
    "time_of_day",
    "duration_minutes",
    "start_date",
    "end_date",
)


def _parse_fields(data: dict) -> dict:
    """
    Map API field names to entity attributes, parsing coded values.

    Raises:
        InvalidRuleError: If a value cannot be parsed
    """
    parsers = {
        "customerId": ("customer_id", lambda v: v),
        "teamId": ("team_id", lambda v: v),
        "title": ("title", lambda v: clean_text(v, 255) or ""),
        "address": ("address", clean_text),
        "frequency": ("frequency", parse_frequency),
        "dayOfWeek": ("day_of_week", lambda v: v),
        "dayOfMonth": ("day_of_month", lambda v: v),
        "time": ("time_of_day", parse_time_of_day),
        "duration": ("duration_minutes", lambda v: v),
        "type": ("service_type", parse_service_type),
        "status": ("status", parse_status),
        "startDate": ("start_date", lambda v: v),
        "endDate": ("end_date", lambda v: v),
        "notes": ("notes", clean_text),
    }
    fields = {}
    try:
        for key, value in data.items():
            if key in parsers:
                attr, parse = parsers[key]
                fields[attr] = parse(value) if value is not None else None
    except ValueError as e:
        raise InvalidRuleError(str(e)) from e
    if "title" in fields and fields["title"] is None:
        fields["title"] = ""
    return fields


def _apply_legacy_day(fields: dict, day: Optional[int], frequency: Frequency) -> None:
    """Read the dashboard's single `day` field as the anchor the frequency uses"""
    if day is None or not isinstance(frequency, Frequency):
        return
    attr = "day_of_week" if frequency.uses_day_of_week else "day_of_month"
    if fields.get(attr) is None:
        fields[attr] = day


class RecurrenceService:
    """
    Service layer for recurrence rules.

    Mutations of one rule are serialized through the lock manager, and every
    mutating operation returns the rule as stored afterwards.
    """

    def __init__(
        self,
        repo: RecurrenceRepository,
        calendar: TeamCalendarProvider,
        appointments: Optional[AppointmentFactory] = None,
        directory: Optional[Directory] = None,
        locks: Optional[RuleLockManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_occurrences: int = RECURRENCE_MAX_OCCURRENCES,
        conflict_retries: int = RECURRENCE_CONFLICT_RETRIES,
    ):
        self.repo = repo
        self.appointments = appointments
        self.directory = directory
        self.locks = locks or RuleLockManager()
        self.clock = clock or datetime.utcnow
        self.max_occurrences = max_occurrences
        self.conflict_retries = conflict_retries
        self.lifecycle = LifecycleManager()
        self.conflicts = ConflictChecker(calendar)
        self.tracker = ExecutionTracker(repo, self.lifecycle)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, rule_id: int) -> RecurrenceRule:
        rule = self.repo.find_by_id(rule_id)
        if rule is None:
            raise NotFoundError("Recurrence", rule_id)
        return rule

    def list_rules(
        self,
        filters: Optional[RuleFilters] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> PagedResult:
        pagination = Pagination(page=max(1, page), page_size=min(max(1, page_size), MAX_PAGE_SIZE))
        return self.repo.list(filters or RuleFilters(), pagination)

    def list_occurrences(
        self, rule_id: int, window_start: Bound, window_end: Bound, limit: Optional[int] = None
    ) -> list[Occurrence]:
        """Occurrences of the rule inside the window; empty unless the rule is active"""
        rule = self.get(rule_id)
        return self._occurrences(rule, window_start, window_end, limit)

    def check_occurrences(
        self, rule_id: int, window_start: Bound, window_end: Bound, limit: Optional[int] = None
    ) -> list[ConflictCheck]:
        """Conflict checks for the window's occurrences, without writing anything"""
        rule = self.get(rule_id)
        occurrences = self._occurrences(rule, window_start, window_end, limit)
        return self.conflicts.check_all(occurrences, rule.team_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, data: RecurrenceCreate) -> RecurrenceRule:
        """
        Validate and store a new rule.

        Raises:
            InvalidRuleError: malformed schedule, dates or status
            NotFoundError: unknown team or customer
        """
        logger.info(f"📥 Creating recurrence for company_id: {data.companyId}, customer_id: {data.customerId}")

        fields = _parse_fields(data.model_dump())
        _apply_legacy_day(fields, data.day, fields.get("frequency"))
        fields.setdefault("title", "")

        rule = RecurrenceRule(id=None, company_id=data.companyId, **fields)
        validate_schedule(rule)

        if rule.status not in (RuleStatus.ACTIVE, RuleStatus.PAUSED):
            raise InvalidRuleError("New recurrences must be active or paused")

        self._check_references(rule)

        first = first_occurrence(rule)
        if first is None:
            raise InvalidRuleError("Schedule produces no occurrences between startDate and endDate")
        rule.next_execution = first.scheduled_start

        now = self.clock()
        rule.created_at = now
        rule.updated_at = now

        saved = self.repo.save(rule)
        logger.info(
            f"✅ Recurrence {saved.id} created: {saved.frequency.value}, first visit {saved.next_execution}"
        )
        return saved

    def update(self, rule_id: int, data: RecurrenceUpdate) -> RecurrenceRule:
        """
        Edit a rule's descriptive and schedule fields.

        Status and execution pointers are not editable here; schedule changes
        re-derive next_execution from the last execution (or the start).
        """
        changes = data.model_dump(exclude_unset=True)
        legacy_day = changes.pop("day", None)

        with self.locks.hold(rule_key(rule_id)):
            rule = self.get(rule_id)
            if rule.status.is_terminal:
                raise InvalidTransitionError(rule.status, "updated")

            fields = _parse_fields(changes)
            if fields.get("frequency") is None:
                fields.pop("frequency", None)
            for required in ("customer_id", "time_of_day", "duration_minutes", "start_date", "service_type"):
                if required in fields and fields[required] is None:
                    raise InvalidRuleError(f"{required} cannot be cleared")

            frequency = fields.get("frequency", rule.frequency)
            if "frequency" in fields and frequency.uses_day_of_week != rule.frequency.uses_day_of_week:
                # Switching anchor family drops the old anchor unless it is sent again
                if frequency.uses_day_of_week:
                    fields.setdefault("day_of_month", None)
                else:
                    fields.setdefault("day_of_week", None)
            _apply_legacy_day(fields, legacy_day, frequency)

            updated = dataclasses.replace(rule, **fields)
            validate_schedule(updated)

            if updated.team_id != rule.team_id or updated.customer_id != rule.customer_id:
                self._check_references(updated)

            if any(getattr(updated, f) != getattr(rule, f) for f in SCHEDULE_FIELDS):
                if updated.last_execution is not None:
                    upcoming = next_occurrence(updated, updated.last_execution)
                else:
                    upcoming = first_occurrence(updated)
                    if upcoming is None:
                        raise InvalidRuleError("Schedule produces no occurrences between startDate and endDate")
                if updated.status == RuleStatus.PAUSED and upcoming is not None:
                    # Paused rules keep a pointer no earlier than the one they were paused with
                    retained = rule.next_execution
                    if retained is not None and retained > upcoming.scheduled_start:
                        upcoming = next_occurrence(updated, retained, inclusive=True)
                updated.next_execution = upcoming.scheduled_start if upcoming else None

            updated.updated_at = self.clock()
            self.lifecycle.evaluate_completion(updated)

            saved = self.repo.save(updated)
            logger.info(f"✏️ Recurrence {rule_id} updated: {sorted(fields)}")
            return saved

    def pause(self, rule_id: int) -> RecurrenceRule:
        with self.locks.hold(rule_key(rule_id)):
            rule = self.get(rule_id)
            self.lifecycle.pause(rule)
            rule.updated_at = self.clock()
            return self.repo.save(rule)

    def resume(self, rule_id: int) -> RecurrenceRule:
        with self.locks.hold(rule_key(rule_id)):
            rule = self.get(rule_id)
            now = self.clock()
            self.lifecycle.resume(rule, now)
            rule.updated_at = now
            return self.repo.save(rule)

    def cancel(self, rule_id: int) -> RecurrenceRule:
        """Cancel a rule; appointments already created from it are kept"""
        with self.locks.hold(rule_key(rule_id)):
            rule = self.get(rule_id)
            now = self.clock()
            self.lifecycle.cancel(rule, now)
            rule.updated_at = now
            return self.repo.delete(rule)

    def record_execution(self, rule_id: int, occurrence_time: datetime) -> RecurrenceRule:
        """
        Record a completed visit and advance the rule's execution pointers.

        Raises:
            StaleExecutionError: occurrence_time is at or before last_execution
        """
        with self.locks.hold(rule_key(rule_id)):
            return self.tracker.record_execution(rule_id, occurrence_time)

    def schedule_occurrences(self, rule_id: int, window_start: Bound, window_end: Bound) -> ScheduleBatch:
        """
        Materialize the window's occurrences as appointments.

        Candidates that overlap an existing team commitment are returned as
        ConflictErrors in the batch; they never block the other candidates.
        Occurrences already on the calendar are skipped.
        """
        if self.appointments is None:
            raise PersistenceError("No appointment factory configured for scheduling")

        batch = ScheduleBatch()
        # Rule lock first, then team lock; nothing takes them in the other order
        with self.locks.hold(rule_key(rule_id)):
            # Read under the rule lock so a concurrent pause or cancel is seen
            rule = self.get(rule_id)
            occurrences = self._occurrences(rule, window_start, window_end)
            if not occurrences:
                return batch

            if rule.team_id is None:
                self._materialize_all(rule, occurrences, batch)
            else:
                with self.locks.hold(team_key(rule.team_id)):
                    self._materialize_all(rule, occurrences, batch)

        logger.info(
            f"📅 Recurrence {rule.id} scheduling: {len(batch.scheduled)} created, "
            f"{len(batch.skipped)} already scheduled, {len(batch.conflicts)} conflicts"
        )
        return batch

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _materialize_all(self, rule: RecurrenceRule, occurrences: list[Occurrence], batch: ScheduleBatch) -> None:
        for check in self.conflicts.check_all(occurrences, rule.team_id):
            if check.duplicate:
                batch.skipped.append(check.occurrence)
                continue

            try:
                final = self._verify(check)
            except ConflictError as e:
                logger.warning(f"⚠️ Recurrence {rule.id}: {e.message}")
                batch.conflicts.append(e)
                continue

            if final.duplicate:
                batch.skipped.append(final.occurrence)
                continue

            appointment_id = self.appointments.materialize(final.occurrence, rule)
            batch.scheduled.append((final.occurrence, appointment_id))

    def _occurrences(
        self, rule: RecurrenceRule, window_start: Bound, window_end: Bound, limit: Optional[int] = None
    ) -> list[Occurrence]:
        lower = to_window_bound(window_start)
        upper = to_window_bound(window_end, upper=True)
        if upper < lower:
            raise InvalidRuleError("Window end must not precede window start")
        cap = self.max_occurrences if limit is None else min(limit, self.max_occurrences)
        return generate(rule, lower, upper, cap)

    def _verify(self, check: ConflictCheck) -> ConflictCheck:
        """Verify before commit, re-checking stale snapshots up to `conflict_retries` times"""
        attempts = 0
        while True:
            if check.duplicate:
                return check
            try:
                self.conflicts.verify(check)
                return check
            except ConflictError as e:
                if not e.stale or attempts >= self.conflict_retries:
                    raise
                attempts += 1
                check = self.conflicts.check(check.occurrence, check.team_id)

    def _check_references(self, rule: RecurrenceRule) -> None:
        if self.directory is None:
            return
        if not self.directory.customer_exists(rule.customer_id):
            raise NotFoundError("Customer", rule.customer_id)
        if rule.team_id is not None and not self.directory.team_exists(rule.team_id):
            raise NotFoundError("Team", rule.team_id)
