"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import CacheManagerDep, CurrentCaller, DatabaseSession
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
)
from app.schemas.availability import AvailabilityResponse
from app.services.appointment_service import AppointmentService
from app.services.slot_inventory import SlotInventory

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AppointmentResponse:
    """
    Book a new appointment in pending state.

    Patients book for themselves; doctors and admins pass ``patient_id``.

    Args:
        data: Appointment creation data
        caller: Authenticated caller
        db: Database session
        cache_manager: Availability cache

    Returns:
        Created appointment
    """
    service = AppointmentService(db, cache_manager=cache_manager)
    return await service.create_appointment(data, caller)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    caller: CurrentCaller,
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the caller with filtering.

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(caller, filters)


@router.get(
    "/slots/{doctor_id}/{day}",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List open slots of a doctor",
)
async def list_open_slots(
    doctor_id: UUID,
    day: date,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AvailabilityResponse:
    """
    List the free slots of a doctor on a day.

    Returns:
        Open slots ordered by start time
    """
    inventory = SlotInventory(db, cache_manager=cache_manager)
    slots = await inventory.list_open_slots(doctor_id, day)
    return AvailabilityResponse(doctor_id=doctor_id, day=day, slots=slots)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    service = AppointmentService(db)
    return await service.get_appointment(appointment_id, caller)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AppointmentResponse:
    """
    Partially update an appointment.

    Patients may only change ``reason`` and ``notes`` or cancel; other
    fields they send are ignored.

    Args:
        appointment_id: Appointment ID
        data: Update data
        caller: Authenticated caller
        db: Database session
        cache_manager: Availability cache

    Returns:
        Updated appointment
    """
    service = AppointmentService(db, cache_manager=cache_manager)
    return await service.update_appointment(appointment_id, data, caller)


@router.put(
    "/{appointment_id}/confirm",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Confirm appointment",
)
async def confirm_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AppointmentResponse:
    """Confirm a pending appointment (doctor or admin)."""
    service = AppointmentService(db, cache_manager=cache_manager)
    return await service.confirm_appointment(appointment_id, caller)


@router.put(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> AppointmentResponse:
    """Mark a confirmed appointment as completed (doctor or admin)."""
    service = AppointmentService(db, cache_manager=cache_manager)
    return await service.complete_appointment(appointment_id, caller)


@router.put(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
    data: AppointmentCancel | None = None,
) -> AppointmentResponse:
    """Cancel an appointment and free its slot."""
    service = AppointmentService(db, cache_manager=cache_manager)
    reason = data.reason if data else None
    return await service.cancel_appointment(appointment_id, reason, caller)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Appointments"],
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    caller: CurrentCaller,
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
) -> None:
    """Permanently delete an appointment (admin only)."""
    service = AppointmentService(db, cache_manager=cache_manager)
    await service.delete_appointment(appointment_id, caller)
