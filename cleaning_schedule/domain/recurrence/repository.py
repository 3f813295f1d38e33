"""Recurrence repository - Database operations for recurrence rules"""

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy import func, or_
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import PERSISTENCE_MAX_RETRIES, PERSISTENCE_RETRY_DELAY
from ...models import Recurrence
from .entities import (
    Frequency,
    PagedResult,
    Pagination,
    RecurrenceRule,
    RuleFilters,
    RuleStatus,
    ServiceType,
)
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns copied one-to-one between the row and the entity
PLAIN_COLUMNS = (
    "company_id",
    "customer_id",
    "team_id",
    "title",
    "address",
    "day_of_week",
    "day_of_month",
    "time_of_day",
    "duration_minutes",
    "start_date",
    "end_date",
    "last_execution",
    "next_execution",
    "notes",
    "created_at",
    "updated_at",
    "cancelled_at",
)


def _to_entity(row: Recurrence) -> RecurrenceRule:
    return RecurrenceRule(
        id=row.id,
        frequency=Frequency(row.frequency),
        service_type=ServiceType(row.service_type),
        status=RuleStatus(row.status),
        **{name: getattr(row, name) for name in PLAIN_COLUMNS},
    )


def _apply(row: Recurrence, rule: RecurrenceRule) -> None:
    for name in PLAIN_COLUMNS:
        if name in ("created_at", "updated_at") and getattr(rule, name) is None:
            continue
        setattr(row, name, getattr(rule, name))
    row.frequency = rule.frequency.value
    row.service_type = rule.service_type.value
    row.status = rule.status.value


class SqlRecurrenceRepository:
    """
    Recurrence rules stored in the `recurrences` table.

    Operational errors (dropped connections, lock waits, deadlocks) are
    retried with a linear backoff; anything else is surfaced as a permanent
    PersistenceError.
    """

    def __init__(
        self,
        db: Session,
        max_retries: int = PERSISTENCE_MAX_RETRIES,
        retry_delay: float = PERSISTENCE_RETRY_DELAY,
    ):
        self.db = db
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _run(self, action: str, operation: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except OperationalError as e:
                self.db.rollback()
                if attempt > self.max_retries:
                    logger.error(f"❌ {action} failed after {attempt} attempts: {e}")
                    raise PersistenceError(f"{action} failed: {e.orig}") from e
                logger.warning(f"🔄 {action} failed (attempt {attempt}), retrying: {e.orig}")
                time.sleep(self.retry_delay * attempt)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ {action} failed: {e}")
                raise PersistenceError(f"{action} failed: {e}") from e

    def save(self, rule: RecurrenceRule) -> RecurrenceRule:
        def operation():
            if rule.id is None:
                row = Recurrence()
                self.db.add(row)
            else:
                row = self.db.query(Recurrence).filter(Recurrence.id == rule.id).first()
                if row is None:
                    raise PersistenceError(f"Recurrence {rule.id} no longer exists")
            _apply(row, rule)
            self.db.commit()
            self.db.refresh(row)
            return _to_entity(row)

        return self._run("Saving recurrence", operation)

    def find_by_id(self, rule_id: int) -> Optional[RecurrenceRule]:
        def operation():
            row = self.db.query(Recurrence).filter(Recurrence.id == rule_id).first()
            return _to_entity(row) if row else None

        return self._run(f"Loading recurrence {rule_id}", operation)

    def list_active(self) -> list[RecurrenceRule]:
        def operation():
            rows = (
                self.db.query(Recurrence)
                .filter(Recurrence.status == RuleStatus.ACTIVE.value)
                .order_by(Recurrence.id)
                .all()
            )
            return [_to_entity(r) for r in rows]

        return self._run("Listing active recurrences", operation)

    def list(self, filters: RuleFilters, pagination: Pagination) -> PagedResult:
        def operation():
            query = self.db.query(Recurrence)

            if filters.company_id is not None:
                query = query.filter(Recurrence.company_id == filters.company_id)
            if filters.customer_id is not None:
                query = query.filter(Recurrence.customer_id == filters.customer_id)
            if filters.team_id is not None:
                query = query.filter(Recurrence.team_id == filters.team_id)
            if filters.status is not None:
                query = query.filter(Recurrence.status == filters.status.value)
            if filters.service_type is not None:
                query = query.filter(Recurrence.service_type == filters.service_type.value)

            if filters.search:
                search_term = f"%{filters.search.strip()}%"
                query = query.filter(
                    or_(
                        Recurrence.title.ilike(search_term),
                        Recurrence.address.ilike(search_term),
                        Recurrence.notes.ilike(search_term),
                    )
                )

            # Rules whose [start_date, end_date] overlaps the requested range
            if filters.start_date is not None:
                query = query.filter(
                    or_(Recurrence.end_date.is_(None), Recurrence.end_date >= filters.start_date)
                )
            if filters.end_date is not None:
                query = query.filter(Recurrence.start_date <= filters.end_date)

            total = query.with_entities(func.count(Recurrence.id)).scalar() or 0
            rows = (
                query.order_by(Recurrence.created_at.desc(), Recurrence.id.desc())
                .offset(pagination.offset)
                .limit(pagination.page_size)
                .all()
            )
            return PagedResult.build([_to_entity(r) for r in rows], total, pagination)

        return self._run("Listing recurrences", operation)

    def delete(self, rule: RecurrenceRule) -> RecurrenceRule:
        """Soft delete - the cancelled rule is stored, the row is kept"""
        saved = self.save(rule)
        logger.info(f"🗑️ Recurrence {rule.id} cancelled (record kept)")
        return saved
