"""
Lifecycle transitions for recurrence rules

Statuses: active ↔ paused → cancelled, active → completed/cancelled

Note:
- 'completed' is automatic only (set when the schedule is exhausted)
- 'cancelled' is manual only and terminal; appointments already created
  from the rule are left untouched
"""

import logging
from datetime import datetime
from typing import Optional

from .entities import RecurrenceRule, RuleStatus
from .exceptions import InvalidTransitionError
from .occurrences import next_occurrence

logger = logging.getLogger(__name__)

# Transitions a user may request
MANUAL_TRANSITIONS = {
    RuleStatus.ACTIVE: {RuleStatus.PAUSED, RuleStatus.CANCELLED},
    RuleStatus.PAUSED: {RuleStatus.ACTIVE, RuleStatus.CANCELLED},
    RuleStatus.COMPLETED: set(),  # Terminal state
    RuleStatus.CANCELLED: set(),  # Terminal state
}


def validate_transition(current: RuleStatus, requested: RuleStatus) -> None:
    """Raise InvalidTransitionError unless a user may move a rule from `current` to `requested`"""
    if requested not in MANUAL_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, requested)


class LifecycleManager:
    """Owns every change to a rule's status"""

    def pause(self, rule: RecurrenceRule) -> RecurrenceRule:
        validate_transition(rule.status, RuleStatus.PAUSED)
        # next_execution is kept as-is until the rule is resumed
        rule.status = RuleStatus.PAUSED
        logger.info(f"⏸️ Recurrence {rule.id} transitioned: active → paused")
        return rule

    def resume(self, rule: RecurrenceRule, now: datetime) -> RecurrenceRule:
        """
        Reactivate a paused rule from its retained next execution.

        Slots that passed while the rule was paused are skipped, never
        back-filled: the new pointer is the first occurrence at or after
        both the retained pointer and `now`.
        """
        validate_transition(rule.status, RuleStatus.ACTIVE)
        rule.status = RuleStatus.ACTIVE

        resume_from = now if rule.next_execution is None else max(now, rule.next_execution)
        if rule.last_execution is not None and resume_from <= rule.last_execution:
            upcoming = next_occurrence(rule, rule.last_execution)
        else:
            upcoming = next_occurrence(rule, resume_from, inclusive=True)
        rule.next_execution = upcoming.scheduled_start if upcoming else None
        logger.info(f"▶️ Recurrence {rule.id} transitioned: paused → active (next: {rule.next_execution})")

        self.evaluate_completion(rule)
        return rule

    def cancel(self, rule: RecurrenceRule, now: Optional[datetime] = None) -> RecurrenceRule:
        previous = rule.status
        validate_transition(previous, RuleStatus.CANCELLED)
        rule.status = RuleStatus.CANCELLED
        rule.next_execution = None
        rule.cancelled_at = now
        logger.info(f"🛑 Recurrence {rule.id} transitioned: {previous.value} → cancelled")
        return rule

    def evaluate_completion(self, rule: RecurrenceRule) -> bool:
        """
        Complete an active rule whose schedule is exhausted.

        Returns:
            bool: True if the rule moved to 'completed'
        """
        if rule.status != RuleStatus.ACTIVE:
            return False

        reached_end = (
            rule.end_date is not None
            and rule.last_execution is not None
            and rule.last_execution.date() >= rule.end_date
        )
        if not reached_end and rule.next_execution is not None:
            return False

        rule.status = RuleStatus.COMPLETED
        rule.next_execution = None
        logger.info(f"✅ Recurrence {rule.id} transitioned: active → completed")
        return True
