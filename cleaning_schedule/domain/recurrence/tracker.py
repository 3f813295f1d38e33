"""Execution tracking - advances a rule's execution pointers as visits complete"""

import logging
from datetime import datetime

from .entities import RecurrenceRule, RuleStatus
from .exceptions import InvalidTransitionError, NotFoundError, StaleExecutionError
from .interfaces import RecurrenceRepository
from .lifecycle import LifecycleManager
from .occurrences import next_occurrence, to_naive_utc

logger = logging.getLogger(__name__)


class ExecutionTracker:
    def __init__(self, repo: RecurrenceRepository, lifecycle: LifecycleManager):
        self.repo = repo
        self.lifecycle = lifecycle

    def record_execution(self, rule_id: int, occurrence_time: datetime) -> RecurrenceRule:
        """
        Record that the occurrence at `occurrence_time` was carried out.

        Callers serialize this per rule; next_execution is derived from
        last_execution, so two concurrent writers could skip or repeat a slot.

        Raises:
            NotFoundError: unknown rule
            StaleExecutionError: occurrence_time is not after last_execution
            InvalidTransitionError: the rule is completed or cancelled
        """
        occurrence_time = to_naive_utc(occurrence_time)
        rule = self.repo.find_by_id(rule_id)
        if rule is None:
            raise NotFoundError("Recurrence", rule_id)

        if rule.last_execution is not None and occurrence_time <= rule.last_execution:
            logger.warning(
                f"⚠️ Out-of-order execution for recurrence {rule_id}: "
                f"{occurrence_time.isoformat()} <= {rule.last_execution.isoformat()}"
            )
            raise StaleExecutionError(
                f"Execution at {occurrence_time.isoformat()} is not after the last recorded "
                f"execution {rule.last_execution.isoformat()}"
            )

        if rule.status.is_terminal:
            raise InvalidTransitionError(rule.status, "executed")

        # A paused rule keeps its pointer until resumed, as long as it stays ahead of the execution
        keep_pointer = (
            rule.status == RuleStatus.PAUSED
            and rule.next_execution is not None
            and rule.next_execution > occurrence_time
        )
        rule.last_execution = occurrence_time
        if not keep_pointer:
            upcoming = next_occurrence(rule, occurrence_time)
            rule.next_execution = upcoming.scheduled_start if upcoming else None

        rule = self.repo.save(rule)
        logger.info(
            f"📌 Recurrence {rule.id} executed at {occurrence_time.isoformat()}, next: {rule.next_execution}"
        )

        if self.lifecycle.evaluate_completion(rule):
            rule = self.repo.save(rule)

        return rule
