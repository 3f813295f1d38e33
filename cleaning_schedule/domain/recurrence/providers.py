"""SQL-backed team calendar, appointment creation and reference lookups"""

import logging
from datetime import datetime

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models_schedule import Appointment, Customer, Team
from .entities import BusyInterval, Occurrence, RecurrenceRule
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)


class SqlTeamCalendar:
    """Reads a team's non-cancelled appointments from the appointments table"""

    def __init__(self, db: Session):
        self.db = db

    def appointments_for(self, team_id: int, window_start: datetime, window_end: datetime) -> list[BusyInterval]:
        try:
            rows = (
                self.db.query(Appointment)
                .filter(
                    Appointment.team_id == team_id,
                    Appointment.status != "cancelled",
                    Appointment.start < window_end,
                    Appointment.end > window_start,
                )
                .order_by(Appointment.start, Appointment.id)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to read calendar for team {team_id}: {e}")
            raise PersistenceError(
                f"Could not read calendar for team {team_id}", transient=isinstance(e, OperationalError)
            ) from e

        return [
            BusyInterval(
                appointment_id=row.id,
                team_id=row.team_id,
                start=row.start,
                end=row.end,
                recurrence_id=row.recurrence_id,
            )
            for row in rows
        ]


class SqlAppointmentFactory:
    """Creates durable appointments for accepted occurrences"""

    def __init__(self, db: Session):
        self.db = db

    def materialize(self, occurrence: Occurrence, rule: RecurrenceRule) -> int:
        appointment = Appointment(
            company_id=rule.company_id,
            customer_id=rule.customer_id,
            team_id=rule.team_id,
            recurrence_id=rule.id,
            title=rule.title or f"{rule.service_type.value.capitalize()} cleaning",
            address=rule.address,
            service_type=rule.service_type.value,
            start=occurrence.scheduled_start,
            end=occurrence.scheduled_end,
            notes=rule.notes,
        )
        try:
            self.db.add(appointment)
            self.db.commit()
            self.db.refresh(appointment)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create appointment for recurrence {rule.id}: {e}")
            raise PersistenceError(
                f"Could not create appointment for {occurrence.scheduled_start.isoformat()}",
                transient=isinstance(e, OperationalError),
            ) from e

        logger.info(
            f"✅ Appointment {appointment.id} created for recurrence {rule.id} at "
            f"{occurrence.scheduled_start.isoformat()}"
        )
        return appointment.id


class SqlDirectory:
    def __init__(self, db: Session):
        self.db = db

    def team_exists(self, team_id: int) -> bool:
        return self.db.query(Team.id).filter(Team.id == team_id).first() is not None

    def customer_exists(self, customer_id: int) -> bool:
        return self.db.query(Customer.id).filter(Customer.id == customer_id).first() is not None
