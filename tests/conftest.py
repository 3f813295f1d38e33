"""
Global pytest configuration and fixtures
"""

import copy
import os
from datetime import date, datetime, time
from itertools import count

# Keep module-level engine creation away from any real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RECURRENCE_REDIS_LOCKS", "false")

import pytest
from fakeredis import FakeRedis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cleaning_schedule import models, models_schedule  # noqa: F401
from cleaning_schedule.database import Base
from cleaning_schedule.domain.recurrence.entities import (
    BusyInterval,
    Frequency,
    PagedResult,
    RecurrenceRule,
    RuleStatus,
)
from cleaning_schedule.domain.recurrence.service import RecurrenceService
from cleaning_schedule.locks import RuleLockManager


class InMemoryRecurrenceRepository:
    """Stores copies so callers never share state with the store"""

    def __init__(self):
        self.rules = {}
        self.save_count = 0
        self._ids = count(1)

    def save(self, rule):
        stored = copy.deepcopy(rule)
        if stored.id is None:
            stored.id = next(self._ids)
        self.rules[stored.id] = stored
        self.save_count += 1
        return copy.deepcopy(stored)

    def find_by_id(self, rule_id):
        rule = self.rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    def list_active(self):
        return [copy.deepcopy(r) for r in self.rules.values() if r.status == RuleStatus.ACTIVE]

    def list(self, filters, pagination):
        rules = list(self.rules.values())
        if filters.status is not None:
            rules = [r for r in rules if r.status == filters.status]
        if filters.company_id is not None:
            rules = [r for r in rules if r.company_id == filters.company_id]
        if filters.team_id is not None:
            rules = [r for r in rules if r.team_id == filters.team_id]
        if filters.search:
            term = filters.search.lower()
            rules = [r for r in rules if term in (r.title or "").lower()]
        rules.sort(key=lambda r: (r.created_at or datetime.min, r.id), reverse=True)
        page = rules[pagination.offset : pagination.offset + pagination.page_size]
        return PagedResult.build([copy.deepcopy(r) for r in page], len(rules), pagination)

    def delete(self, rule):
        return self.save(rule)


class FakeCalendar:
    """Team calendar backed by a plain list of busy intervals"""

    def __init__(self):
        self.intervals = []
        self.reads = 0
        self._ids = count(1000)

    def add(self, team_id, start, end, recurrence_id=None):
        interval = BusyInterval(next(self._ids), team_id, start, end, recurrence_id)
        self.intervals.append(interval)
        return interval

    def appointments_for(self, team_id, window_start, window_end):
        self.reads += 1
        return [i for i in self.intervals if i.team_id == team_id and i.overlaps(window_start, window_end)]


class FakeAppointmentFactory:
    """Materializes occurrences straight onto the fake calendar"""

    def __init__(self, calendar):
        self.calendar = calendar
        self.created = []
        self._ids = count(1)

    def materialize(self, occurrence, rule):
        if rule.team_id is not None:
            interval = self.calendar.add(
                rule.team_id, occurrence.scheduled_start, occurrence.scheduled_end, rule.id
            )
            appointment_id = interval.appointment_id
        else:
            appointment_id = next(self._ids)
        self.created.append((appointment_id, occurrence))
        return appointment_id


class FakeDirectory:
    def __init__(self, teams=(1, 2), customers=(10, 11)):
        self.teams = set(teams)
        self.customers = set(customers)

    def team_exists(self, team_id):
        return team_id in self.teams

    def customer_exists(self, customer_id):
        return customer_id in self.customers


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def build_rule(**overrides) -> RecurrenceRule:
    """Weekly Monday 10:00-12:00 rule starting 2025-01-01, unless overridden"""
    values = dict(
        id=1,
        company_id=1,
        customer_id=10,
        team_id=1,
        frequency=Frequency.WEEKLY,
        day_of_week=1,
        time_of_day=time(10, 0),
        duration_minutes=120,
        start_date=date(2025, 1, 1),
    )
    values.update(overrides)
    return RecurrenceRule(**values)


@pytest.fixture
def make_rule():
    return build_rule


@pytest.fixture
def repo():
    return InMemoryRecurrenceRepository()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def appointments(calendar):
    return FakeAppointmentFactory(calendar)


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 2, 8, 0))


@pytest.fixture
def service(repo, calendar, appointments, directory, clock):
    return RecurrenceService(
        repo=repo,
        calendar=calendar,
        appointments=appointments,
        directory=directory,
        locks=RuleLockManager(),
        clock=clock,
    )


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine shared across threads"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def fake_redis():
    """Fake Redis instance for tests"""
    redis = FakeRedis(decode_responses=True)
    yield redis
    redis.flushall()
