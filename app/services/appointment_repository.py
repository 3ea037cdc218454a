"""Appointment storage over SQLAlchemy Core."""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceException
from app.models.appointments import appointments
from app.schemas.appointments import (
    Appointment,
    AppointmentFilters,
    AppointmentStatus,
    RecurrenceChild,
    RecurrenceParent,
    Standalone,
)
from app.schemas.recurrence import RecurrenceRule

logger = structlog.get_logger()


def row_to_appointment(row: Any) -> Appointment:
    """Map a table row to an appointment, resolving the recurrence variant."""
    data = dict(row._mapping)
    rule = data.pop("recurrence_rule", None)
    parent_id = data.pop("recurrence_parent_id", None)
    is_recurring = data.pop("is_recurring", False)

    if is_recurring and rule:
        data["recurrence"] = RecurrenceParent(rule=RecurrenceRule.from_rrule_string(rule))
    elif parent_id is not None:
        data["recurrence"] = RecurrenceChild(parent_id=parent_id)
    else:
        data["recurrence"] = Standalone()

    return Appointment.model_validate(data)


def appointment_to_values(appointment: Appointment) -> dict[str, Any]:
    """Column values for inserting an appointment."""
    return {
        "id": appointment.id,
        "clinic_id": appointment.clinic_id,
        "patient_id": appointment.patient_id,
        "title": appointment.title,
        "description": appointment.description,
        "start_time": appointment.start_time,
        "end_time": appointment.end_time,
        "status": appointment.status.value,
        "is_recurring": appointment.is_recurring,
        "recurrence_rule": appointment.recurrence_rule,
        "recurrence_parent_id": appointment.recurrence_parent_id,
    }


class AppointmentRepository:
    """
    Storage collaborator for the scheduler.

    Every write commits its own transaction; any database failure is rolled
    back and surfaced as :class:`PersistenceException`.
    """

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def list_appointments(
        self,
        clinic_id: UUID,
        filters: AppointmentFilters | None = None,
    ) -> list[Appointment]:
        """
        List a clinic's appointments ordered by start time.

        Args:
            clinic_id: Owning clinic
            filters: Optional status and date window filters

        Returns:
            Appointments of the clinic
        """
        conditions = [appointments.c.clinic_id == clinic_id]

        if filters is not None:
            if filters.status:
                conditions.append(appointments.c.status == filters.status.value)
            if filters.from_date:
                conditions.append(appointments.c.end_time > filters.from_date)
            if filters.to_date:
                conditions.append(appointments.c.start_time < filters.to_date)

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.start_time, appointments.c.id)
        )

        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._failure("list_appointments", e) from e

        return [row_to_appointment(row) for row in result.fetchall()]

    async def get_appointment(self, clinic_id: UUID, appointment_id: UUID) -> Appointment | None:
        """Get one appointment of a clinic, or None."""
        stmt = select(appointments).where(
            and_(
                appointments.c.id == appointment_id,
                appointments.c.clinic_id == clinic_id,
            )
        )

        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._failure("get_appointment", e) from e

        row = result.fetchone()
        return row_to_appointment(row) if row else None

    async def insert_appointment(self, record: Appointment) -> Appointment:
        """Insert a single appointment."""
        stmt = insert(appointments).values(**appointment_to_values(record)).returning(appointments)

        try:
            result = await self.db.execute(stmt)
            row = result.fetchone()
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._failure("insert_appointment", e) from e

        return row_to_appointment(row)

    async def insert_many(self, records: Sequence[Appointment]) -> list[Appointment]:
        """
        Insert several appointments as one atomic write.

        A recurrence parent and its children go through here together, so a
        failure leaves neither behind.
        """
        if not records:
            return []

        stmt = insert(appointments).returning(appointments, sort_by_parameter_order=True)

        try:
            result = await self.db.execute(stmt, [appointment_to_values(r) for r in records])
            rows = result.fetchall()
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._failure("insert_many", e, count=len(records)) from e

        return [row_to_appointment(row) for row in rows]

    async def update_appointment_time(
        self,
        clinic_id: UUID,
        appointment_id: UUID,
        start_time: datetime,
        end_time: datetime,
    ) -> Appointment | None:
        """Move one appointment; siblings in its recurrence are untouched."""
        return await self._update(
            clinic_id,
            appointment_id,
            {"start_time": start_time, "end_time": end_time},
        )

    async def update_appointment_status(
        self,
        clinic_id: UUID,
        appointment_id: UUID,
        status: AppointmentStatus,
    ) -> Appointment | None:
        """Change the status of one appointment."""
        return await self._update(clinic_id, appointment_id, {"status": status.value})

    async def _update(
        self,
        clinic_id: UUID,
        appointment_id: UUID,
        values: dict[str, Any],
    ) -> Appointment | None:
        values["updated_at"] = datetime.now(UTC)
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.clinic_id == clinic_id,
                )
            )
            .values(**values)
            .returning(appointments)
        )

        try:
            result = await self.db.execute(stmt)
            row = result.fetchone()
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._failure(
                "update_appointment", e, appointment_id=str(appointment_id)
            ) from e

        return row_to_appointment(row) if row else None

    async def _failure(
        self, operation: str, error: SQLAlchemyError, **context: Any
    ) -> PersistenceException:
        await self.db.rollback()
        logger.error("appointment_storage_failed", operation=operation, error=str(error), **context)
        return PersistenceException(f"Failed to {operation.replace('_', ' ')}")
