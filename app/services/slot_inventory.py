"""Doctor slot inventory."""

from collections.abc import Sequence
from datetime import UTC, date, datetime, time
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    InvalidInputException,
    SlotNotFoundException,
    SlotUnavailableException,
)
from app.core.locks import BookingLocks, booking_locks
from app.core.redis_client import CacheManager
from app.models.doctor_slots import doctor_slots
from app.schemas.availability import SlotInput, TimeSlot
from app.services.conflict_resolver import ConflictResolver, intervals_overlap

logger = structlog.get_logger()


def validate_slots(slots: Sequence[SlotInput | TimeSlot]) -> list[SlotInput]:
    """
    Check a slot list and return it ordered by start time.

    Raises:
        InvalidInputException: If a slot is empty or inverted, or two slots overlap
    """
    ordered = sorted(
        (SlotInput(start_time=s.start_time, end_time=s.end_time) for s in slots),
        key=lambda s: s.start_time,
    )

    for slot in ordered:
        if slot.end_time <= slot.start_time:
            raise InvalidInputException(
                f"Slot {slot.start_time.isoformat()}-{slot.end_time.isoformat()} "
                "must end after it starts"
            )

    for previous, current in zip(ordered, ordered[1:]):
        if intervals_overlap(
            previous.start_time, previous.end_time, current.start_time, current.end_time
        ):
            raise InvalidInputException(
                f"Slots {previous.start_time.isoformat()}-{previous.end_time.isoformat()} and "
                f"{current.start_time.isoformat()}-{current.end_time.isoformat()} overlap"
            )

    return ordered


class SlotInventory:
    """
    Owns each doctor's bookable slots per day.

    The ``is_booked`` column is a cache over the active appointment set.
    ``reserve`` and ``release`` never commit: they run inside the
    transaction of the appointment write that justifies them.
    ``set_availability`` and ``reconcile`` are standalone operations and
    commit their own work.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        locks: BookingLocks | None = None,
    ):
        """Initialize inventory with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager
        self.locks = locks or booking_locks
        self.conflicts = ConflictResolver(db)

    @staticmethod
    def _get_cache_key(doctor_id: UUID, day: date) -> str:
        """Generate cache key for a doctor's day."""
        return f"availability:{doctor_id}:{day.isoformat()}"

    def invalidate(self, doctor_id: UUID, day: date) -> None:
        """Drop the cached listing for a doctor's day."""
        if self.cache:
            self.cache.delete(self._get_cache_key(doctor_id, day))

    def _slot_filter(self, doctor_id: UUID, day: date):
        return and_(doctor_slots.c.doctor_id == doctor_id, doctor_slots.c.day == day)

    def _overlap_filter(self, doctor_id: UUID, day: date, start_time: time, end_time: time):
        return and_(
            self._slot_filter(doctor_id, day),
            doctor_slots.c.start_time < end_time,
            doctor_slots.c.end_time > start_time,
        )

    async def _derive_flags(
        self,
        doctor_id: UUID,
        day: date,
        slots: Sequence[SlotInput | TimeSlot],
        exclude_appointment_id: UUID | None = None,
    ) -> list[bool]:
        """Compute booked flags for slots from the active appointment set."""
        busy = await self.conflicts.active_intervals(
            doctor_id, day, exclude_appointment_id=exclude_appointment_id
        )
        return [
            any(intervals_overlap(s.start_time, s.end_time, b_start, b_end) for b_start, b_end in busy)
            for s in slots
        ]

    async def get_availability(self, doctor_id: UUID, day: date) -> list[TimeSlot]:
        """
        Get the configured slots of a doctor on a day.

        Booked flags are derived from active appointments on read, so a
        drifted cache column never leaks to callers.

        Args:
            doctor_id: Doctor ID
            day: Calendar day

        Returns:
            Slots ordered by start time; empty when none are configured
        """
        if self.cache:
            cached = self.cache.get_json(self._get_cache_key(doctor_id, day))
            if cached is not None:
                return [TimeSlot.model_validate(item) for item in cached]

        stmt = (
            select(doctor_slots.c.start_time, doctor_slots.c.end_time)
            .where(self._slot_filter(doctor_id, day))
            .order_by(doctor_slots.c.start_time)
        )
        result = await self.db.execute(stmt)
        rows = result.all()

        configured = [TimeSlot(start_time=row.start_time, end_time=row.end_time) for row in rows]
        flags = await self._derive_flags(doctor_id, day, configured)
        slots = [
            slot.model_copy(update={"is_booked": booked})
            for slot, booked in zip(configured, flags)
        ]

        if self.cache:
            self.cache.set_json(
                self._get_cache_key(doctor_id, day),
                [slot.model_dump(mode="json") for slot in slots],
                ttl=settings.availability_cache_ttl,
            )

        return slots

    async def list_open_slots(self, doctor_id: UUID, day: date) -> list[TimeSlot]:
        """Get only the free slots of a doctor on a day."""
        return [slot for slot in await self.get_availability(doctor_id, day) if not slot.is_booked]

    async def set_availability(
        self,
        doctor_id: UUID,
        day: date,
        slots: Sequence[SlotInput | TimeSlot],
    ) -> list[TimeSlot]:
        """
        Replace the slot list of a doctor's day.

        Existing appointments are not checked for conflicts here; booked
        flags of the new slots are derived from them so the cache starts
        consistent.

        Args:
            doctor_id: Doctor ID
            day: Calendar day
            slots: New slots, in any order

        Returns:
            The stored slots ordered by start time

        Raises:
            InvalidInputException: If a slot is inverted or two slots overlap
        """
        ordered = validate_slots(slots)
        now = datetime.now(UTC)

        async with self.locks.hold(self.db, [(doctor_id, day)]):
            try:
                await self.db.execute(delete(doctor_slots).where(self._slot_filter(doctor_id, day)))

                flags = await self._derive_flags(doctor_id, day, ordered)
                if ordered:
                    await self.db.execute(
                        insert(doctor_slots),
                        [
                            {
                                "doctor_id": doctor_id,
                                "day": day,
                                "start_time": slot.start_time,
                                "end_time": slot.end_time,
                                "is_booked": booked,
                                "updated_at": now,
                            }
                            for slot, booked in zip(ordered, flags)
                        ],
                    )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        self.invalidate(doctor_id, day)
        logger.info(
            "availability_replaced",
            doctor_id=str(doctor_id),
            day=day.isoformat(),
            slot_count=len(ordered),
        )

        return [
            TimeSlot(start_time=slot.start_time, end_time=slot.end_time, is_booked=booked)
            for slot, booked in zip(ordered, flags)
        ]

    async def reserve(self, doctor_id: UUID, day: date, start_time: time, end_time: time) -> int:
        """
        Mark the slots overlapping an interval as booked.

        Args:
            doctor_id: Doctor ID
            day: Calendar day
            start_time: Interval start
            end_time: Interval end

        Returns:
            Number of slots marked booked

        Raises:
            SlotNotFoundException: If no configured slot overlaps the interval
            SlotUnavailableException: If an overlapping slot is already booked
        """
        stmt = (
            select(doctor_slots.c.id, doctor_slots.c.is_booked)
            .where(self._overlap_filter(doctor_id, day, start_time, end_time))
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        rows = result.all()

        if not rows:
            raise SlotNotFoundException()

        if any(row.is_booked for row in rows):
            logger.info(
                "slot_already_booked",
                doctor_id=str(doctor_id),
                day=day.isoformat(),
                start_time=start_time.isoformat(),
            )
            raise SlotUnavailableException()

        await self.db.execute(
            update(doctor_slots)
            .where(doctor_slots.c.id.in_([row.id for row in rows]))
            .values(is_booked=True, updated_at=datetime.now(UTC))
        )
        return len(rows)

    async def release(
        self,
        doctor_id: UUID,
        day: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: UUID | None = None,
    ) -> int:
        """
        Clear the booked flag on slots overlapping an interval.

        A slot stays booked while any other active appointment still
        overlaps it. No-op when the slots are already free or absent.

        Args:
            doctor_id: Doctor ID
            day: Calendar day
            start_time: Interval start
            end_time: Interval end
            exclude_appointment_id: Appointment giving up the interval; it is
                ignored even if its row is still active in this transaction

        Returns:
            Number of slots marked free
        """
        stmt = (
            select(doctor_slots.c.id, doctor_slots.c.start_time, doctor_slots.c.end_time)
            .where(
                and_(
                    self._overlap_filter(doctor_id, day, start_time, end_time),
                    doctor_slots.c.is_booked.is_(True),
                )
            )
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        rows = result.all()
        if not rows:
            return 0

        slots = [TimeSlot(start_time=r.start_time, end_time=r.end_time) for r in rows]
        still_booked = await self._derive_flags(
            doctor_id, day, slots, exclude_appointment_id=exclude_appointment_id
        )
        freed = [row.id for row, booked in zip(rows, still_booked) if not booked]

        if freed:
            await self.db.execute(
                update(doctor_slots)
                .where(doctor_slots.c.id.in_(freed))
                .values(is_booked=False, updated_at=datetime.now(UTC))
            )
        return len(freed)

    async def reconcile(self, doctor_id: UUID, day: date) -> int:
        """
        Rewrite stored booked flags from the active appointment set.

        Returns:
            Number of slots whose flag changed
        """
        async with self.locks.hold(self.db, [(doctor_id, day)]):
            try:
                stmt = (
                    select(
                        doctor_slots.c.id,
                        doctor_slots.c.start_time,
                        doctor_slots.c.end_time,
                        doctor_slots.c.is_booked,
                    )
                    .where(self._slot_filter(doctor_id, day))
                    .with_for_update()
                )
                result = await self.db.execute(stmt)
                rows = result.all()

                slots = [TimeSlot(start_time=r.start_time, end_time=r.end_time) for r in rows]
                flags = await self._derive_flags(doctor_id, day, slots)
                now = datetime.now(UTC)

                changed = 0
                for row, booked in zip(rows, flags):
                    if row.is_booked != booked:
                        await self.db.execute(
                            update(doctor_slots)
                            .where(doctor_slots.c.id == row.id)
                            .values(is_booked=booked, updated_at=now)
                        )
                        changed += 1

                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        self.invalidate(doctor_id, day)
        if changed:
            logger.warning(
                "slot_flags_reconciled",
                doctor_id=str(doctor_id),
                day=day.isoformat(),
                changed=changed,
            )
        return changed
