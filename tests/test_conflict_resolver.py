"""Tests for overlap detection."""

from datetime import UTC, date, datetime, time
from uuid import uuid4

import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import appointments
from app.schemas.users import UserRole
from app.services.conflict_resolver import ConflictResolver, intervals_overlap

DAY = date(2030, 6, 1)


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [
        ((time(9, 0), time(9, 30)), (time(9, 15), time(9, 45)), True),
        ((time(9, 0), time(10, 0)), (time(9, 15), time(9, 45)), True),
        ((time(9, 15), time(9, 45)), (time(9, 0), time(10, 0)), True),
        ((time(9, 0), time(9, 30)), (time(9, 0), time(9, 30)), True),
        # Back-to-back intervals share only an endpoint
        ((time(9, 0), time(9, 30)), (time(9, 30), time(10, 0)), False),
        ((time(9, 30), time(10, 0)), (time(9, 0), time(9, 30)), False),
        ((time(8, 0), time(8, 30)), (time(9, 0), time(9, 30)), False),
    ],
)
def test_intervals_overlap(a, b, expected):
    assert intervals_overlap(a[0], a[1], b[0], b[1]) is expected


async def _insert_appointment(
    db: AsyncSession,
    patient_id,
    doctor_id,
    start: time,
    end: time,
    status: str = "pending",
    day: date = DAY,
):
    appointment_id = uuid4()
    now = datetime.now(UTC)
    await db.execute(
        insert(appointments).values(
            id=appointment_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=day,
            start_time=start,
            end_time=end,
            reason="Checkup",
            status=status,
            created_by=patient_id,
            created_at=now,
            updated_at=now,
        )
    )
    await db.commit()
    return appointment_id


@pytest.mark.asyncio
async def test_has_conflict_with_active_appointment(db_session, patient, doctor):
    await _insert_appointment(db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30))
    resolver = ConflictResolver(db_session)

    assert await resolver.has_conflict(doctor["id"], DAY, time(9, 15), time(9, 45))
    assert not await resolver.has_conflict(doctor["id"], DAY, time(9, 30), time(10, 0))
    assert not await resolver.has_conflict(doctor["id"], date(2030, 6, 2), time(9, 0), time(9, 30))


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["cancelled", "completed"])
async def test_terminal_appointments_never_conflict(db_session, patient, doctor, status):
    await _insert_appointment(
        db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30), status=status
    )
    resolver = ConflictResolver(db_session)

    assert not await resolver.has_conflict(doctor["id"], DAY, time(9, 0), time(9, 30))
    assert await resolver.find_conflicts(doctor["id"], DAY, time(9, 0), time(9, 30)) == []


@pytest.mark.asyncio
async def test_conflict_is_per_doctor(db_session, patient, doctor, make_user):
    other_doctor = await make_user(UserRole.DOCTOR)
    await _insert_appointment(db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30))
    resolver = ConflictResolver(db_session)

    assert not await resolver.has_conflict(other_doctor["id"], DAY, time(9, 0), time(9, 30))


@pytest.mark.asyncio
async def test_exclude_appointment_when_rescheduling(db_session, patient, doctor):
    appointment_id = await _insert_appointment(
        db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30)
    )
    resolver = ConflictResolver(db_session)

    assert not await resolver.has_conflict(
        doctor["id"], DAY, time(9, 15), time(9, 45), exclude_appointment_id=appointment_id
    )
    assert not await resolver.patient_has_conflict(
        patient["id"], DAY, time(9, 15), time(9, 45), exclude_appointment_id=appointment_id
    )


@pytest.mark.asyncio
async def test_find_conflicts_ordered(db_session, patient, other_patient, doctor):
    second = await _insert_appointment(
        db_session, other_patient["id"], doctor["id"], time(10, 0), time(10, 30)
    )
    first = await _insert_appointment(
        db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30)
    )
    resolver = ConflictResolver(db_session)

    conflicts = await resolver.find_conflicts(doctor["id"], DAY, time(9, 0), time(11, 0))

    assert [c["id"] for c in conflicts] == [first, second]


@pytest.mark.asyncio
async def test_patient_has_conflict_across_doctors(db_session, patient, doctor, make_user):
    other_doctor = await make_user(UserRole.DOCTOR)
    await _insert_appointment(db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30))
    resolver = ConflictResolver(db_session)

    assert await resolver.patient_has_conflict(patient["id"], DAY, time(9, 0), time(9, 30))
    assert not await resolver.has_conflict(other_doctor["id"], DAY, time(9, 0), time(9, 30))


@pytest.mark.asyncio
async def test_active_intervals(db_session, patient, doctor):
    await _insert_appointment(db_session, patient["id"], doctor["id"], time(11, 0), time(11, 30))
    await _insert_appointment(db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30))
    await _insert_appointment(
        db_session, patient["id"], doctor["id"], time(10, 0), time(10, 30), status="cancelled"
    )
    resolver = ConflictResolver(db_session)

    assert await resolver.active_intervals(doctor["id"], DAY) == [
        (time(9, 0), time(9, 30)),
        (time(11, 0), time(11, 30)),
    ]
