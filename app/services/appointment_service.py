"""Appointment scheduling service."""

from collections.abc import Iterable
from datetime import UTC, date, datetime, time
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, insert, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core import policy
from app.core.events import STATUS_EVENTS, AppointmentEvent, EventEmitter, EventType, event_emitter
from app.core.exceptions import (
    InvalidInputException,
    InvalidStateException,
    NotFoundException,
    SlotConflictException,
    SlotNotFoundException,
)
from app.core.locks import BookingLocks, LockKey, booking_locks
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.schemas.appointments import (
    SCHEDULE_FIELDS,
    TERMINAL_STATUSES,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentMode,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
)
from app.schemas.users import Caller, UserRole
from app.services.conflict_resolver import ConflictResolver
from app.services.slot_inventory import SlotInventory
from app.services.status_lifecycle import check_transition, is_terminal
from app.services.user_service import UserService

logger = structlog.get_logger()

ACTIVE_SLOT_INDEX = "uq_appointments_active_doctor_slot"


def _is_active_slot_violation(exc: IntegrityError) -> bool:
    """Check if an IntegrityError came from the active doctor/slot unique index."""
    message = str(exc.orig)
    return ACTIVE_SLOT_INDEX in message or "UNIQUE constraint failed: appointments." in message


def _minutes_between(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


class AppointmentService:
    """
    Orchestrates booking, rescheduling and status changes.

    Every write runs as one transaction under the booking lock of each
    doctor/day it touches: conflict check, slot flag changes and the
    appointment row are committed together or not at all. Events are
    emitted only after commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        emitter: EventEmitter | None = None,
        locks: BookingLocks | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.emitter = emitter or event_emitter
        self.locks = locks or booking_locks
        self.inventory = SlotInventory(db, cache_manager=cache_manager, locks=self.locks)
        self.conflicts = ConflictResolver(db)
        self.directory = UserService()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_response(row: Any) -> AppointmentResponse:
        return AppointmentResponse.model_validate(dict(row))

    async def _fetch(self, appointment_id: UUID, for_update: bool = False) -> AppointmentResponse:
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        row = result.mappings().first()

        if not row:
            raise NotFoundException("Appointment not found")

        return self._to_response(row)

    async def _refetch_locked(
        self,
        appointment_id: UUID,
        locked: Iterable[LockKey],
    ) -> AppointmentResponse:
        """Re-read an appointment under its lock and make sure the lock still covers it."""
        current = await self._fetch(appointment_id, for_update=True)
        if (current.doctor_id, current.appointment_date) not in set(locked):
            raise SlotConflictException("Appointment was modified concurrently, please retry")
        return current

    def _validate_interval(self, appointment_date: date, start_time: time, end_time: time) -> None:
        if end_time <= start_time:
            raise InvalidInputException("End time must be after start time")

        if _minutes_between(start_time, end_time) > settings.max_appointment_minutes:
            raise InvalidInputException(
                f"Appointments may not exceed {settings.max_appointment_minutes} minutes"
            )

        if settings.reject_past_appointments:
            if datetime.combine(appointment_date, start_time) < datetime.now():
                raise InvalidInputException("Cannot create appointments in the past")

    async def _ensure_available(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: UUID | None = None,
    ) -> None:
        """Raise SlotConflictException if doctor or patient is already busy."""
        conflicts = await self.conflicts.find_conflicts(
            doctor_id, appointment_date, start_time, end_time, exclude_appointment_id
        )
        if conflicts:
            logger.info(
                "slot_conflict_detected",
                doctor_id=str(doctor_id),
                appointment_date=appointment_date.isoformat(),
                start_time=start_time.isoformat(),
                end_time=end_time.isoformat(),
                conflicting_appointment_ids=[str(c["id"]) for c in conflicts],
            )
            raise SlotConflictException()

        if await self.conflicts.patient_has_conflict(
            patient_id, appointment_date, start_time, end_time, exclude_appointment_id
        ):
            raise SlotConflictException("You already have an appointment during this time")

    async def _reserve_slot(
        self, doctor_id: UUID, appointment_date: date, start_time: time, end_time: time
    ) -> bool:
        """Reserve configured slots; a booking without a configured slot is allowed."""
        try:
            await self.inventory.reserve(doctor_id, appointment_date, start_time, end_time)
            return True
        except SlotNotFoundException:
            logger.debug(
                "appointment_without_configured_slot",
                doctor_id=str(doctor_id),
                appointment_date=appointment_date.isoformat(),
                start_time=start_time.isoformat(),
            )
            return False

    async def _execute_write(self, stmt: Any) -> Any:
        """Execute a write, translating active slot index violations."""
        try:
            return await self.db.execute(stmt)
        except IntegrityError as e:
            if _is_active_slot_violation(e):
                raise SlotConflictException() from e
            raise

    async def _emit(
        self,
        event_type: EventType,
        appointment: AppointmentResponse,
        caller: Caller,
        previous_status: AppointmentStatus | None = None,
    ) -> None:
        await self.emitter.emit(
            AppointmentEvent(
                event_type=event_type,
                appointment=appointment,
                actor_id=caller.id,
                actor_role=caller.role,
                previous_status=previous_status,
            )
        )

    def _resolve_patient_id(self, data: AppointmentCreate, caller: Caller) -> UUID:
        if caller.role == UserRole.PATIENT:
            if data.patient_id is not None and data.patient_id != caller.id:
                policy.ensure_role(caller, UserRole.DOCTOR, UserRole.ADMIN)
            return caller.id

        if data.patient_id is None:
            raise InvalidInputException("patient_id is required when booking for a patient")

        if caller.role == UserRole.DOCTOR and data.doctor_id != caller.id:
            policy.ensure_role(caller, UserRole.ADMIN)

        return data.patient_id

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_appointment(
        self,
        data: AppointmentCreate,
        caller: Caller,
    ) -> AppointmentResponse:
        """
        Book a new appointment in ``pending`` state.

        Args:
            data: Appointment creation data
            caller: Identity performing the booking

        Returns:
            Created appointment

        Raises:
            InvalidInputException: If the interval is malformed
            NotFoundException: If the patient or doctor is missing or inactive
            SlotConflictException: If the doctor or patient is already booked
            SlotUnavailableException: If the configured slot is already booked
        """
        patient_id = self._resolve_patient_id(data, caller)
        self._validate_interval(data.appointment_date, data.start_time, data.end_time)

        await self.directory.get_active_participant(self.db, patient_id, UserRole.PATIENT)
        await self.directory.get_active_participant(self.db, data.doctor_id, UserRole.DOCTOR)

        now = datetime.now(UTC)
        values = {
            "patient_id": patient_id,
            "doctor_id": data.doctor_id,
            "appointment_date": data.appointment_date,
            "start_time": data.start_time,
            "end_time": data.end_time,
            "reason": data.reason,
            "notes": data.notes,
            "mode": AppointmentMode(data.mode).value,
            "status": AppointmentStatus.PENDING.value,
            "created_by": caller.id,
            "created_at": now,
            "updated_at": now,
        }

        async with self.locks.hold(self.db, [(data.doctor_id, data.appointment_date)]):
            try:
                await self._ensure_available(
                    data.doctor_id,
                    patient_id,
                    data.appointment_date,
                    data.start_time,
                    data.end_time,
                )
                await self._reserve_slot(
                    data.doctor_id, data.appointment_date, data.start_time, data.end_time
                )
                result = await self._execute_write(
                    insert(appointments).values(**values).returning(appointments)
                )
                row = result.mappings().first()
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        appointment = self._to_response(row)
        self.inventory.invalidate(appointment.doctor_id, appointment.appointment_date)

        logger.info(
            "appointment_created",
            appointment_id=str(appointment.id),
            doctor_id=str(appointment.doctor_id),
            patient_id=str(appointment.patient_id),
            appointment_date=appointment.appointment_date.isoformat(),
            start_time=appointment.start_time.isoformat(),
        )
        await self._emit(EventType.CREATED, appointment, caller)

        return appointment

    async def get_appointment(
        self,
        appointment_id: UUID,
        caller: Caller,
    ) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller doesn't have access
        """
        appointment = await self._fetch(appointment_id)
        policy.ensure_can_view(appointment, caller)
        return appointment

    async def list_appointments(
        self,
        caller: Caller,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the caller with filtering and pagination.

        Patients see their own appointments, doctors the appointments booked
        with them, admins everything.
        """
        conditions = []

        if caller.role == UserRole.PATIENT:
            conditions.append(appointments.c.patient_id == caller.id)
        elif caller.role == UserRole.DOCTOR:
            conditions.append(appointments.c.doctor_id == caller.id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        where = and_(true(), *conditions)

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.appointment_date, appointments.c.start_time)
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[self._to_response(row) for row in result.mappings().all()],
        )

    async def update_appointment(
        self,
        appointment_id: UUID,
        data: AppointmentUpdate,
        caller: Caller,
    ) -> AppointmentResponse:
        """
        Apply a partial update.

        Fields the caller's role may not set are dropped. Moving the
        appointment in time or to another doctor re-runs the conflict check
        against everything except the appointment itself and moves the slot
        reservation; on any failure nothing is changed.

        Args:
            appointment_id: Appointment ID
            data: Fields to change
            caller: Identity performing the update

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If appointment (or the new doctor) not found
            ForbiddenException: If caller may not modify it or make the status change
            InvalidStateException: If the appointment is terminal or the status move is illegal
            SlotConflictException: If the new interval is taken
        """
        current = await self._fetch(appointment_id)
        policy.ensure_can_modify(current, caller)

        patch = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        patch = policy.filter_patch_for_role(patch, caller.role)

        if not patch:
            # No changes, return current state
            return current

        if is_terminal(current.status):
            raise InvalidStateException(
                f"Appointment is already {current.status.value} and cannot be modified"
            )

        new_status = patch.pop("status", None)
        if new_status is not None:
            new_status = AppointmentStatus(new_status)
            if new_status == current.status:
                new_status = None
            else:
                check_transition(current.status, new_status, caller.role)

        target = {
            "doctor_id": patch.get("doctor_id", current.doctor_id),
            "appointment_date": patch.get("appointment_date", current.appointment_date),
            "start_time": patch.get("start_time", current.start_time),
            "end_time": patch.get("end_time", current.end_time),
        }
        rescheduled = any(target[field] != getattr(current, field) for field in SCHEDULE_FIELDS)
        ends_active = new_status not in TERMINAL_STATUSES

        if rescheduled:
            self._validate_interval(
                target["appointment_date"], target["start_time"], target["end_time"]
            )
            if target["doctor_id"] != current.doctor_id:
                await self.directory.get_active_participant(
                    self.db, target["doctor_id"], UserRole.DOCTOR
                )

        values: dict[str, Any] = {}
        for field, value in patch.items():
            values[field] = value.value if isinstance(value, AppointmentMode) else value

        now = datetime.now(UTC)
        values["updated_at"] = now
        if new_status is not None:
            values["status"] = new_status.value
            if new_status == AppointmentStatus.CANCELLED:
                values["cancelled_at"] = now

        old_key = (current.doctor_id, current.appointment_date)
        new_key = (target["doctor_id"], target["appointment_date"])

        async with self.locks.hold(self.db, [old_key, new_key]):
            try:
                current = await self._refetch_locked(appointment_id, [old_key, new_key])
                if is_terminal(current.status):
                    raise InvalidStateException(
                        f"Appointment is already {current.status.value} and cannot be modified"
                    )
                if new_status is not None:
                    check_transition(current.status, new_status, caller.role)

                if rescheduled and ends_active:
                    await self._ensure_available(
                        target["doctor_id"],
                        current.patient_id,
                        target["appointment_date"],
                        target["start_time"],
                        target["end_time"],
                        exclude_appointment_id=appointment_id,
                    )

                if rescheduled or not ends_active:
                    await self.inventory.release(
                        current.doctor_id,
                        current.appointment_date,
                        current.start_time,
                        current.end_time,
                        exclude_appointment_id=current.id,
                    )

                if rescheduled and ends_active:
                    await self._reserve_slot(
                        target["doctor_id"],
                        target["appointment_date"],
                        target["start_time"],
                        target["end_time"],
                    )

                result = await self._execute_write(
                    update(appointments)
                    .where(appointments.c.id == appointment_id)
                    .values(**values)
                    .returning(appointments)
                )
                row = result.mappings().first()
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        updated = self._to_response(row)
        for doctor_id, day in {old_key, new_key}:
            self.inventory.invalidate(doctor_id, day)

        logger.info(
            "appointment_updated",
            appointment_id=str(appointment_id),
            fields=sorted(values),
            rescheduled=rescheduled,
        )

        await self._emit(EventType.UPDATED, updated, caller, previous_status=current.status)
        if rescheduled:
            await self._emit(EventType.RESCHEDULED, updated, caller)
        if new_status is not None:
            await self._emit(
                STATUS_EVENTS[new_status], updated, caller, previous_status=current.status
            )

        return updated

    async def transition_status(
        self,
        appointment_id: UUID,
        requested: AppointmentStatus,
        caller: Caller,
        note: str | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment along the status lifecycle.

        Entering a terminal state releases the slot reservation.

        Args:
            appointment_id: Appointment ID
            requested: Target status
            caller: Identity requesting the change
            note: Text appended to the notes (used for cancellation reasons)

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller may not touch it or make this move
            InvalidStateException: If the lifecycle forbids the move
        """
        current = await self._fetch(appointment_id)
        policy.ensure_can_modify(current, caller)
        check_transition(current.status, requested, caller.role)

        key = (current.doctor_id, current.appointment_date)

        async with self.locks.hold(self.db, [key]):
            try:
                current = await self._refetch_locked(appointment_id, [key])
                check_transition(current.status, requested, caller.role)

                now = datetime.now(UTC)
                values: dict[str, Any] = {"status": requested.value, "updated_at": now}

                if requested == AppointmentStatus.CANCELLED:
                    values["cancelled_at"] = now

                if note:
                    line = (
                        f"Cancellation reason: {note}"
                        if requested == AppointmentStatus.CANCELLED
                        else note
                    )
                    values["notes"] = f"{current.notes}\n{line}" if current.notes else line

                if requested in TERMINAL_STATUSES:
                    await self.inventory.release(
                        current.doctor_id,
                        current.appointment_date,
                        current.start_time,
                        current.end_time,
                        exclude_appointment_id=current.id,
                    )

                result = await self._execute_write(
                    update(appointments)
                    .where(appointments.c.id == appointment_id)
                    .values(**values)
                    .returning(appointments)
                )
                row = result.mappings().first()
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        updated = self._to_response(row)
        self.inventory.invalidate(updated.doctor_id, updated.appointment_date)

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            old_status=current.status.value,
            new_status=requested.value,
            actor_role=caller.role.value,
        )
        await self._emit(STATUS_EVENTS[requested], updated, caller, previous_status=current.status)

        return updated

    async def confirm_appointment(
        self, appointment_id: UUID, caller: Caller
    ) -> AppointmentResponse:
        """Confirm a pending appointment."""
        return await self.transition_status(appointment_id, AppointmentStatus.CONFIRMED, caller)

    async def complete_appointment(
        self, appointment_id: UUID, caller: Caller
    ) -> AppointmentResponse:
        """Mark a confirmed appointment as completed."""
        return await self.transition_status(appointment_id, AppointmentStatus.COMPLETED, caller)

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        reason: str | None,
        caller: Caller,
    ) -> AppointmentResponse:
        """
        Cancel an appointment and free its slot.

        Cancelling a completed or an already cancelled appointment fails
        with InvalidStateException.
        """
        return await self.transition_status(
            appointment_id, AppointmentStatus.CANCELLED, caller, note=reason
        )

    async def delete_appointment(
        self,
        appointment_id: UUID,
        caller: Caller,
    ) -> None:
        """
        Permanently remove an appointment (admin only).

        Raises:
            ForbiddenException: If caller is not an admin
            NotFoundException: If appointment not found
        """
        policy.ensure_role(caller, UserRole.ADMIN)

        current = await self._fetch(appointment_id)
        key = (current.doctor_id, current.appointment_date)

        async with self.locks.hold(self.db, [key]):
            try:
                current = await self._refetch_locked(appointment_id, [key])
                if current.is_active:
                    await self.inventory.release(
                        current.doctor_id,
                        current.appointment_date,
                        current.start_time,
                        current.end_time,
                        exclude_appointment_id=current.id,
                    )
                await self.db.execute(delete(appointments).where(appointments.c.id == appointment_id))
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        self.inventory.invalidate(current.doctor_id, current.appointment_date)

        logger.info("appointment_deleted", appointment_id=str(appointment_id))
        await self._emit(EventType.DELETED, current, caller, previous_status=current.status)
