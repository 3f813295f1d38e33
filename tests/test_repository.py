"""
Tests for the SQL repository and providers (SQLite in memory)
"""

from datetime import date, datetime, time
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from cleaning_schedule.domain.recurrence.entities import (
    Frequency,
    Occurrence,
    Pagination,
    RuleFilters,
    RuleStatus,
    ServiceType,
)
from cleaning_schedule.domain.recurrence.exceptions import PersistenceError
from cleaning_schedule.domain.recurrence.providers import (
    SqlAppointmentFactory,
    SqlDirectory,
    SqlTeamCalendar,
)
from cleaning_schedule.domain.recurrence.repository import SqlRecurrenceRepository
from cleaning_schedule.models_schedule import Appointment, Customer, Team


@pytest.fixture
def sql_repo(db_session):
    return SqlRecurrenceRepository(db_session, max_retries=2, retry_delay=0)


class TestSqlRecurrenceRepository:
    def test_save_and_find(self, sql_repo, make_rule):
        saved = sql_repo.save(
            make_rule(
                id=None,
                title="Weekly office clean",
                service_type=ServiceType.DEEP,
                next_execution=datetime(2025, 1, 6, 10, 0),
            )
        )

        found = sql_repo.find_by_id(saved.id)

        assert found.id == saved.id
        assert found.frequency == Frequency.WEEKLY
        assert found.service_type == ServiceType.DEEP
        assert found.status == RuleStatus.ACTIVE
        assert found.time_of_day == time(10, 0)
        assert found.start_date == date(2025, 1, 1)
        assert found.next_execution == datetime(2025, 1, 6, 10, 0)
        assert found.created_at is not None

    def test_find_unknown(self, sql_repo):
        assert sql_repo.find_by_id(404) is None

    def test_update_existing(self, sql_repo, make_rule):
        saved = sql_repo.save(make_rule(id=None))
        saved.status = RuleStatus.PAUSED
        saved.last_execution = datetime(2025, 1, 6, 10, 0)

        sql_repo.save(saved)

        found = sql_repo.find_by_id(saved.id)
        assert found.status == RuleStatus.PAUSED
        assert found.last_execution == datetime(2025, 1, 6, 10, 0)

    def test_delete_is_soft(self, sql_repo, make_rule):
        saved = sql_repo.save(make_rule(id=None))
        saved.status = RuleStatus.CANCELLED
        saved.cancelled_at = datetime(2025, 1, 10, 12, 0)

        sql_repo.delete(saved)

        found = sql_repo.find_by_id(saved.id)
        assert found.status == RuleStatus.CANCELLED
        assert found.cancelled_at == datetime(2025, 1, 10, 12, 0)

    def test_list_filters_and_paginates(self, sql_repo, make_rule):
        for i in range(5):
            sql_repo.save(
                make_rule(
                    id=None,
                    title=f"Visit {i}",
                    team_id=1 if i % 2 == 0 else 2,
                    created_at=datetime(2025, 1, 1, 8, i),
                )
            )
        sql_repo.save(make_rule(id=None, title="Paused visit", status=RuleStatus.PAUSED))

        page = sql_repo.list(RuleFilters(team_id=1, status=RuleStatus.ACTIVE), Pagination(page=1, page_size=2))

        assert [r.title for r in page.results] == ["Visit 4", "Visit 2"]
        assert page.total_items == 3
        assert page.page_count == 2

    def test_list_search_is_case_insensitive(self, sql_repo, make_rule):
        sql_repo.save(make_rule(id=None, title="Dental clinic", address="12 Main St"))
        sql_repo.save(make_rule(id=None, title="Office", notes="Alarm code at MAIN door"))
        sql_repo.save(make_rule(id=None, title="Warehouse"))

        page = sql_repo.list(RuleFilters(search="main"), Pagination())

        assert {r.title for r in page.results} == {"Dental clinic", "Office"}

    def test_list_date_range_overlap(self, sql_repo, make_rule):
        sql_repo.save(make_rule(id=None, title="Ended", end_date=date(2025, 1, 31)))
        sql_repo.save(make_rule(id=None, title="Open ended"))
        sql_repo.save(make_rule(id=None, title="Future", start_date=date(2025, 6, 1)))

        page = sql_repo.list(
            RuleFilters(start_date=date(2025, 2, 1), end_date=date(2025, 3, 1)), Pagination()
        )

        assert [r.title for r in page.results] == ["Open ended"]

    def test_list_active(self, sql_repo, make_rule):
        sql_repo.save(make_rule(id=None))
        sql_repo.save(make_rule(id=None, status=RuleStatus.PAUSED))
        sql_repo.save(make_rule(id=None, status=RuleStatus.CANCELLED))

        assert [r.status for r in sql_repo.list_active()] == [RuleStatus.ACTIVE]

    def test_operational_errors_are_retried(self, make_rule):
        empty_query = MagicMock()
        empty_query.filter.return_value.first.return_value = None
        db = MagicMock()
        db.query.side_effect = [OperationalError("SELECT", {}, Exception("database is locked"))] * 2 + [
            empty_query
        ]
        repo = SqlRecurrenceRepository(db, max_retries=2, retry_delay=0)

        assert repo.find_by_id(1) is None
        assert db.query.call_count == 3
        assert db.rollback.call_count == 2

    def test_exhausted_retries_raise_persistence_error(self):
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT", {}, Exception("server closed the connection"))
        repo = SqlRecurrenceRepository(db, max_retries=1, retry_delay=0)

        with pytest.raises(PersistenceError) as exc_info:
            repo.find_by_id(1)

        assert exc_info.value.transient is False
        assert db.query.call_count == 2

    def test_other_database_errors_are_not_retried(self):
        db = MagicMock()
        db.query.side_effect = IntegrityError("INSERT", {}, Exception("constraint failed"))
        repo = SqlRecurrenceRepository(db, max_retries=3, retry_delay=0)

        with pytest.raises(PersistenceError):
            repo.find_by_id(1)

        assert db.query.call_count == 1


class TestSqlProviders:
    @pytest.fixture
    def team(self, db_session):
        team = Team(company_id=1, name="Crew A")
        db_session.add(team)
        db_session.add(Customer(id=10, company_id=1, name="Acme Dental"))
        db_session.commit()
        return team

    def test_calendar_excludes_cancelled_and_other_teams(self, db_session, team):
        other = Team(company_id=1, name="Crew B")
        db_session.add(other)
        db_session.commit()
        for team_id, status in [(team.id, "scheduled"), (team.id, "cancelled"), (other.id, "scheduled")]:
            db_session.add(
                Appointment(
                    company_id=1,
                    customer_id=10,
                    team_id=team_id,
                    title="Visit",
                    start=datetime(2025, 1, 6, 10),
                    end=datetime(2025, 1, 6, 12),
                    status=status,
                )
            )
        db_session.commit()

        intervals = SqlTeamCalendar(db_session).appointments_for(
            team.id, datetime(2025, 1, 6), datetime(2025, 1, 7)
        )

        assert len(intervals) == 1
        assert intervals[0].team_id == team.id
        assert intervals[0].start == datetime(2025, 1, 6, 10)

    def test_calendar_window_is_half_open(self, db_session, team):
        db_session.add(
            Appointment(
                company_id=1,
                customer_id=10,
                team_id=team.id,
                title="Visit",
                start=datetime(2025, 1, 6, 12),
                end=datetime(2025, 1, 6, 14),
            )
        )
        db_session.commit()

        calendar = SqlTeamCalendar(db_session)

        assert calendar.appointments_for(team.id, datetime(2025, 1, 6, 10), datetime(2025, 1, 6, 12)) == []
        assert len(calendar.appointments_for(team.id, datetime(2025, 1, 6, 13), datetime(2025, 1, 6, 15))) == 1

    def test_materialize_creates_linked_appointment(self, db_session, team, make_rule):
        rule = make_rule(id=7, team_id=team.id, title="", address="1 Main St")
        occurrence = Occurrence(7, datetime(2025, 1, 6, 10), datetime(2025, 1, 6, 12))

        appointment_id = SqlAppointmentFactory(db_session).materialize(occurrence, rule)

        appointment = db_session.query(Appointment).filter(Appointment.id == appointment_id).one()
        assert appointment.recurrence_id == 7
        assert appointment.title == "Regular cleaning"
        assert appointment.status == "scheduled"
        interval = SqlTeamCalendar(db_session).appointments_for(
            team.id, datetime(2025, 1, 6), datetime(2025, 1, 7)
        )[0]
        assert interval.recurrence_id == 7

    def test_directory(self, db_session, team):
        directory = SqlDirectory(db_session)

        assert directory.team_exists(team.id)
        assert not directory.team_exists(team.id + 100)
        assert directory.customer_exists(10)
        assert not directory.customer_exists(11)
