"""Overlap detection against active appointments."""

from datetime import date, time
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import appointments
from app.schemas.appointments import ACTIVE_STATUSES


def intervals_overlap(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    """Half-open overlap test; back-to-back intervals do not overlap."""
    return a_start < b_end and a_end > b_start


class ConflictResolver:
    """Answers whether a proposed interval collides with active appointments.

    Only pending and confirmed appointments count. Cancelled and completed
    appointments never block a booking.
    """

    def __init__(self, db: AsyncSession):
        """Initialize resolver with database session."""
        self.db = db

    def _active_overlap_conditions(
        self,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: UUID | None,
    ) -> list:
        conditions = [
            appointments.c.appointment_date == appointment_date,
            appointments.c.status.in_([s.value for s in ACTIVE_STATUSES]),
            appointments.c.start_time < end_time,
            appointments.c.end_time > start_time,
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)
        return conditions

    async def find_conflicts(
        self,
        doctor_id: UUID,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: UUID | None = None,
    ) -> list[dict]:
        """
        List active appointments of a doctor that overlap an interval.

        Args:
            doctor_id: Doctor whose calendar is checked
            appointment_date: Calendar date of the interval
            start_time: Interval start (inclusive)
            end_time: Interval end (exclusive)
            exclude_appointment_id: Appointment to ignore, used when rescheduling it

        Returns:
            Conflicting appointment rows ordered by start time
        """
        conditions = self._active_overlap_conditions(
            appointment_date, start_time, end_time, exclude_appointment_id
        )
        stmt = (
            select(appointments)
            .where(and_(appointments.c.doctor_id == doctor_id, *conditions))
            .order_by(appointments.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def has_conflict(
        self,
        doctor_id: UUID,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: UUID | None = None,
    ) -> bool:
        """Check if the doctor already holds an active appointment in the interval."""
        conditions = self._active_overlap_conditions(
            appointment_date, start_time, end_time, exclude_appointment_id
        )
        stmt = (
            select(appointments.c.id)
            .where(and_(appointments.c.doctor_id == doctor_id, *conditions))
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def patient_has_conflict(
        self,
        patient_id: UUID,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: UUID | None = None,
    ) -> bool:
        """Check if the patient already holds an active appointment in the interval."""
        conditions = self._active_overlap_conditions(
            appointment_date, start_time, end_time, exclude_appointment_id
        )
        stmt = (
            select(appointments.c.id)
            .where(and_(appointments.c.patient_id == patient_id, *conditions))
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def active_intervals(
        self,
        doctor_id: UUID,
        day: date,
        exclude_appointment_id: UUID | None = None,
    ) -> list[tuple[time, time]]:
        """Return the (start, end) of every active appointment of a doctor on a day."""
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.appointment_date == day,
            appointments.c.status.in_([s.value for s in ACTIVE_STATUSES]),
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        stmt = (
            select(appointments.c.start_time, appointments.c.end_time)
            .where(and_(*conditions))
            .order_by(appointments.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [(row.start_time, row.end_time) for row in result.all()]
