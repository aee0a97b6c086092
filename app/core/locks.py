"""Per doctor/day serialization for booking writes."""

import asyncio
import hashlib
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

LockKey = tuple[UUID, date]


def advisory_key(doctor_id: UUID, day: date) -> int:
    """Derive a stable signed 64-bit advisory lock key for a doctor/day."""
    digest = hashlib.blake2b(f"{doctor_id}:{day.isoformat()}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class BookingLocks:
    """
    Serializes conflict-check-then-write sequences per (doctor, date).

    Within one process an ``asyncio.Lock`` per key orders concurrent
    requests. On PostgreSQL a transaction-scoped advisory lock extends the
    same ordering across worker processes; it is released by the commit or
    rollback that ends the caller's transaction.

    A key's lock lives only while some task holds or waits on it, so the
    registry does not grow with the number of distinct days ever booked.
    """

    def __init__(self) -> None:
        """Initialize an empty lock registry."""
        self._locks: dict[LockKey, asyncio.Lock] = {}
        self._users: dict[LockKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def _acquire(self, key: LockKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold(
        self,
        db: AsyncSession,
        keys: Iterable[LockKey],
    ) -> AsyncIterator[None]:
        """
        Hold the locks for every key until the block exits.

        Keys are deduplicated and acquired in sorted order so two operations
        touching the same pair of days cannot deadlock.

        Args:
            db: Session whose transaction carries the advisory locks
            keys: (doctor_id, date) pairs to serialize on
        """
        ordered = sorted(set(keys), key=lambda k: (str(k[0]), k[1]))
        use_advisory = db.get_bind().dialect.name == "postgresql"

        async with AsyncExitStack() as stack:
            for doctor_id, day in ordered:
                await stack.enter_async_context(self._acquire((doctor_id, day)))
                if use_advisory:
                    await db.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": advisory_key(doctor_id, day)},
                    )
            logger.debug("booking_locks_acquired", keys=[f"{d}:{k}" for d, k in ordered])
            yield


# Process-wide registry shared by every request
booking_locks = BookingLocks()
