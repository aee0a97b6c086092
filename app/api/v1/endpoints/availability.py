"""Doctor availability endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, status

from app.core import policy
from app.dependencies import CacheManagerDep, CurrentCaller, DatabaseSession
from app.schemas.availability import (
    AvailabilityResponse,
    AvailabilityUpdate,
    ReconcileResponse,
)
from app.schemas.users import UserRole
from app.services.slot_inventory import SlotInventory
from app.services.user_service import UserService

router = APIRouter()


@router.get(
    "/{doctor_id}/{day}",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a doctor's slots",
)
async def get_availability(
    doctor_id: UUID,
    day: date,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AvailabilityResponse:
    """Get every configured slot of a doctor on a day, booked ones included."""
    inventory = SlotInventory(db, cache_manager=cache_manager)
    slots = await inventory.get_availability(doctor_id, day)
    return AvailabilityResponse(doctor_id=doctor_id, day=day, slots=slots)


@router.put(
    "/{doctor_id}/{day}",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Replace a doctor's slots",
)
async def set_availability(
    doctor_id: UUID,
    day: date,
    data: AvailabilityUpdate,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AvailabilityResponse:
    """
    Replace the slot list of a doctor's day.

    Args:
        doctor_id: Doctor ID
        day: Calendar day
        data: New slots
        caller: Authenticated caller (the doctor or an admin)
        db: Database session
        cache_manager: Availability cache

    Returns:
        Stored slots
    """
    policy.ensure_can_manage_availability(doctor_id, caller)
    await UserService().get_active_participant(db, doctor_id, UserRole.DOCTOR)

    inventory = SlotInventory(db, cache_manager=cache_manager)
    slots = await inventory.set_availability(doctor_id, day, data.slots)
    return AvailabilityResponse(doctor_id=doctor_id, day=day, slots=slots)


@router.post(
    "/{doctor_id}/{day}/reconcile",
    response_model=ReconcileResponse,
    status_code=status.HTTP_200_OK,
    summary="Rebuild booked flags from appointments",
)
async def reconcile_availability(
    doctor_id: UUID,
    day: date,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> ReconcileResponse:
    """Rewrite a doctor's stored slot flags from the active appointments (admin only)."""
    policy.ensure_role(caller, UserRole.ADMIN)

    inventory = SlotInventory(db, cache_manager=cache_manager)
    updated = await inventory.reconcile(doctor_id, day)
    return ReconcileResponse(doctor_id=doctor_id, day=day, updated=updated)
