"""Authorization policy for scheduling operations.

Every role decision the scheduling core makes lives here and is consulted
once per operation.
"""

from typing import Any
from uuid import UUID

import structlog

from app.core.exceptions import ForbiddenException
from app.schemas.appointments import AppointmentResponse, AppointmentStatus
from app.schemas.users import Caller, UserRole

logger = structlog.get_logger()

# Fields a patient may set on their own appointment
PATIENT_PATCH_FIELDS = frozenset({"reason", "notes", "status"})


def ensure_role(caller: Caller, *roles: UserRole) -> None:
    """Raise ForbiddenException unless the caller has one of ``roles``."""
    if caller.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise ForbiddenException(f"Only {allowed} users may perform this action")


def is_participant(appointment: AppointmentResponse, caller: Caller) -> bool:
    """Check if the caller is the appointment's patient or doctor."""
    if caller.role == UserRole.PATIENT:
        return appointment.patient_id == caller.id
    if caller.role == UserRole.DOCTOR:
        return appointment.doctor_id == caller.id
    return False


def ensure_can_view(appointment: AppointmentResponse, caller: Caller) -> None:
    """Raise ForbiddenException unless the caller may read the appointment."""
    if caller.is_admin or is_participant(appointment, caller):
        return
    raise ForbiddenException("Access denied to this appointment")


def ensure_can_modify(appointment: AppointmentResponse, caller: Caller) -> None:
    """Raise ForbiddenException unless the caller may change the appointment."""
    if caller.is_admin or is_participant(appointment, caller):
        return
    raise ForbiddenException("Not authorized to modify this appointment")


def ensure_can_manage_availability(doctor_id: UUID, caller: Caller) -> None:
    """Only the doctor themselves or an admin may edit a doctor's slots."""
    if caller.is_admin:
        return
    if caller.role == UserRole.DOCTOR and caller.id == doctor_id:
        return
    raise ForbiddenException("Not authorized to manage this doctor's availability")


def filter_patch_for_role(patch: dict[str, Any], role: UserRole) -> dict[str, Any]:
    """
    Drop the patch fields a role is not allowed to set.

    Patients may set ``reason`` and ``notes``, and may set ``status`` only to
    ``cancelled``. Anything else in a patient's patch is silently removed.
    Doctors and admins may set every field.

    Args:
        patch: Fields explicitly provided by the caller
        role: Role of the caller

    Returns:
        The permitted subset of ``patch``
    """
    if role != UserRole.PATIENT:
        return dict(patch)

    allowed: dict[str, Any] = {}
    dropped: list[str] = []
    for field, value in patch.items():
        if field not in PATIENT_PATCH_FIELDS:
            dropped.append(field)
        elif field == "status" and AppointmentStatus(value) != AppointmentStatus.CANCELLED:
            dropped.append(field)
        else:
            allowed[field] = value

    if dropped:
        logger.info("patient_patch_fields_dropped", fields=sorted(dropped))

    return allowed
