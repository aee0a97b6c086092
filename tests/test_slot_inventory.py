"""Tests for the doctor slot inventory."""

from datetime import UTC, date, datetime, time
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import insert, select, update

from app.core.exceptions import (
    InvalidInputException,
    SlotNotFoundException,
    SlotUnavailableException,
)
from app.models.appointments import appointments
from app.models.doctor_slots import doctor_slots
from app.schemas.availability import SlotInput, TimeSlot
from app.services.slot_inventory import SlotInventory, validate_slots

DAY = date(2030, 6, 1)


def _slots(*pairs: tuple[time, time]) -> list[SlotInput]:
    return [SlotInput(start_time=start, end_time=end) for start, end in pairs]


MORNING = _slots(
    (time(9, 30), time(10, 0)),
    (time(9, 0), time(9, 30)),
    (time(10, 0), time(10, 30)),
)


def test_validate_slots_sorts_by_start():
    ordered = validate_slots(MORNING)
    assert [s.start_time for s in ordered] == [time(9, 0), time(9, 30), time(10, 0)]


def test_validate_slots_rejects_inverted_slot():
    with pytest.raises(InvalidInputException):
        validate_slots(_slots((time(10, 0), time(9, 0))))


def test_validate_slots_rejects_empty_slot():
    with pytest.raises(InvalidInputException):
        validate_slots(_slots((time(9, 0), time(9, 0))))


def test_validate_slots_rejects_overlap():
    with pytest.raises(InvalidInputException) as exc_info:
        validate_slots(_slots((time(9, 0), time(9, 45)), (time(9, 30), time(10, 0))))
    assert "overlap" in exc_info.value.message


async def _stored_flags(db, doctor_id) -> dict[time, bool]:
    result = await db.execute(
        select(doctor_slots.c.start_time, doctor_slots.c.is_booked).where(
            doctor_slots.c.doctor_id == doctor_id
        )
    )
    return {row.start_time: row.is_booked for row in result.all()}


async def _book(db, patient_id, doctor_id, start: time, end: time) -> None:
    now = datetime.now(UTC)
    await db.execute(
        insert(appointments).values(
            id=uuid4(),
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=DAY,
            start_time=start,
            end_time=end,
            reason="Checkup",
            status="pending",
            created_by=patient_id,
            created_at=now,
            updated_at=now,
        )
    )
    await db.commit()


@pytest.mark.asyncio
async def test_set_and_get_availability(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)

    stored = await inventory.set_availability(doctor["id"], DAY, MORNING)
    fetched = await inventory.get_availability(doctor["id"], DAY)

    assert [s.start_time for s in stored] == [time(9, 0), time(9, 30), time(10, 0)]
    assert fetched == stored
    assert not any(s.is_booked for s in fetched)


@pytest.mark.asyncio
async def test_get_availability_without_slots(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    assert await inventory.get_availability(doctor["id"], DAY) == []


@pytest.mark.asyncio
async def test_set_availability_replaces_previous_slots(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    await inventory.set_availability(doctor["id"], DAY, _slots((time(14, 0), time(15, 0))))

    slots = await inventory.get_availability(doctor["id"], DAY)
    assert [(s.start_time, s.end_time) for s in slots] == [(time(14, 0), time(15, 0))]


@pytest.mark.asyncio
async def test_set_availability_derives_flags_from_appointments(
    db_session, patient, doctor, locks
):
    await _book(db_session, patient["id"], doctor["id"], time(9, 30), time(10, 0))
    inventory = SlotInventory(db_session, locks=locks)

    stored = await inventory.set_availability(doctor["id"], DAY, MORNING)

    assert [s.is_booked for s in stored] == [False, True, False]
    assert (await _stored_flags(db_session, doctor["id"]))[time(9, 30)] is True


@pytest.mark.asyncio
async def test_set_availability_invalid_input_keeps_existing(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    with pytest.raises(InvalidInputException):
        await inventory.set_availability(
            doctor["id"], DAY, _slots((time(9, 0), time(10, 0)), (time(9, 30), time(11, 0)))
        )

    assert len(await inventory.get_availability(doctor["id"], DAY)) == 3


@pytest.mark.asyncio
async def test_reserve_and_release(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    reserved = await inventory.reserve(doctor["id"], DAY, time(9, 0), time(9, 30))
    await db_session.commit()

    assert reserved == 1
    assert (await _stored_flags(db_session, doctor["id"]))[time(9, 0)] is True

    with pytest.raises(SlotUnavailableException):
        await inventory.reserve(doctor["id"], DAY, time(9, 0), time(9, 30))

    released = await inventory.release(doctor["id"], DAY, time(9, 0), time(9, 30))
    await db_session.commit()

    assert released == 1
    assert (await _stored_flags(db_session, doctor["id"]))[time(9, 0)] is False


@pytest.mark.asyncio
async def test_reserve_covers_every_overlapping_slot(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    reserved = await inventory.reserve(doctor["id"], DAY, time(9, 15), time(9, 45))
    await db_session.commit()

    flags = await _stored_flags(db_session, doctor["id"])
    assert reserved == 2
    assert flags == {time(9, 0): True, time(9, 30): True, time(10, 0): False}


@pytest.mark.asyncio
async def test_reserve_without_configured_slot(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    with pytest.raises(SlotNotFoundException):
        await inventory.reserve(doctor["id"], DAY, time(15, 0), time(15, 30))


@pytest.mark.asyncio
async def test_release_is_idempotent(db_session, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    assert await inventory.release(doctor["id"], DAY, time(9, 0), time(9, 30)) == 0
    assert await inventory.release(doctor["id"], DAY, time(15, 0), time(15, 30)) == 0


@pytest.mark.asyncio
async def test_release_keeps_slot_still_covered_by_active_appointment(
    db_session, patient, doctor, locks
):
    inventory = SlotInventory(db_session, locks=locks)
    await _book(db_session, patient["id"], doctor["id"], time(9, 30), time(10, 0))
    await inventory.set_availability(doctor["id"], DAY, _slots((time(9, 0), time(10, 0))))

    released = await inventory.release(
        doctor["id"], DAY, time(9, 0), time(9, 30), exclude_appointment_id=uuid4()
    )
    await db_session.commit()

    assert released == 0
    assert await _stored_flags(db_session, doctor["id"]) == {time(9, 0): True}


@pytest.mark.asyncio
async def test_list_open_slots_hides_booked(db_session, patient, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)
    await _book(db_session, patient["id"], doctor["id"], time(9, 0), time(9, 30))

    open_slots = await inventory.list_open_slots(doctor["id"], DAY)

    assert [s.start_time for s in open_slots] == [time(9, 30), time(10, 0)]


@pytest.mark.asyncio
async def test_reconcile_repairs_drifted_flags(db_session, patient, doctor, locks):
    inventory = SlotInventory(db_session, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)
    await _book(db_session, patient["id"], doctor["id"], time(10, 0), time(10, 30))

    # Simulate drift: a stale booked flag and a missing one
    await db_session.execute(
        update(doctor_slots)
        .where(doctor_slots.c.start_time == time(9, 0))
        .values(is_booked=True)
    )
    await db_session.commit()

    changed = await inventory.reconcile(doctor["id"], DAY)

    assert changed == 2
    assert await _stored_flags(db_session, doctor["id"]) == {
        time(9, 0): False,
        time(9, 30): False,
        time(10, 0): True,
    }
    assert await inventory.reconcile(doctor["id"], DAY) == 0


@pytest.mark.asyncio
async def test_get_availability_uses_cache(db_session, doctor, locks):
    mock_cache = MagicMock()
    mock_cache.get_json.return_value = [
        {"start_time": "08:00:00", "end_time": "08:30:00", "is_booked": True}
    ]
    inventory = SlotInventory(db_session, cache_manager=mock_cache, locks=locks)

    slots = await inventory.get_availability(doctor["id"], DAY)

    assert slots == [TimeSlot(start_time=time(8, 0), end_time=time(8, 30), is_booked=True)]
    mock_cache.get_json.assert_called_once_with(f"availability:{doctor['id']}:{DAY.isoformat()}")
    mock_cache.set_json.assert_not_called()


@pytest.mark.asyncio
async def test_get_availability_populates_cache_on_miss(db_session, doctor, locks):
    mock_cache = MagicMock()
    mock_cache.get_json.return_value = None
    inventory = SlotInventory(db_session, cache_manager=mock_cache, locks=locks)
    await inventory.set_availability(doctor["id"], DAY, MORNING)

    await inventory.get_availability(doctor["id"], DAY)

    key, payload = mock_cache.set_json.call_args.args
    assert key == f"availability:{doctor['id']}:{DAY.isoformat()}"
    assert payload[0] == {"start_time": "09:00:00", "end_time": "09:30:00", "is_booked": False}


@pytest.mark.asyncio
async def test_set_availability_invalidates_cache(db_session, doctor, locks):
    mock_cache = MagicMock()
    inventory = SlotInventory(db_session, cache_manager=mock_cache, locks=locks)

    await inventory.set_availability(doctor["id"], DAY, MORNING)

    mock_cache.delete.assert_called_once_with(f"availability:{doctor['id']}:{DAY.isoformat()}")
