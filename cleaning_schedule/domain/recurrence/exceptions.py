"""Recurrence domain errors"""

from typing import Optional


class RecurrenceError(Exception):
    """Base class for recurrence errors; `code` identifies the error kind"""

    code = "recurrence_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRuleError(RecurrenceError):
    """Raised when a rule's schedule or dates are malformed"""

    code = "invalid_rule"


class InvalidTransitionError(RecurrenceError):
    """Raised when a lifecycle transition is not allowed from the current status"""

    code = "invalid_transition"

    def __init__(self, current_status, requested_status):
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(f"Cannot move recurrence from '{current}' to '{requested}'")
        self.current_status = current_status
        self.requested_status = requested_status


class ConflictError(RecurrenceError):
    """
    Raised when a candidate occurrence overlaps an existing team commitment.

    `stale` marks a check whose calendar snapshot changed before commit;
    the caller should re-check rather than treat the slot as free.
    """

    code = "conflict"

    def __init__(self, occurrence, team_id: Optional[int], conflicting=None, stale: bool = False):
        if stale:
            message = (
                f"Calendar for team {team_id} changed while checking "
                f"{occurrence.scheduled_start.isoformat()}; re-check required"
            )
        else:
            appointment_id = conflicting.appointment_id if conflicting else None
            message = (
                f"Occurrence at {occurrence.scheduled_start.isoformat()} overlaps "
                f"appointment {appointment_id} for team {team_id}"
            )
        super().__init__(message)
        self.occurrence = occurrence
        self.team_id = team_id
        self.conflicting = conflicting
        self.stale = stale


class StaleExecutionError(RecurrenceError):
    """Raised when an execution is recorded at or before the rule's last execution"""

    code = "stale_execution"


class NotFoundError(RecurrenceError):
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class PersistenceError(RecurrenceError):
    """
    Raised when the store fails.

    `transient` errors (timeouts, lock contention) may be retried by the
    caller; permanent ones are surfaced as-is.
    """

    code = "persistence_error"

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient
