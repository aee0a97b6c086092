"""Appointment status state machine.

Pure functions only: given the current status, the requested status and the
caller's role, decide whether the move is permitted. No I/O happens here.
"""

from app.core.exceptions import ForbiddenException, InvalidStateException
from app.schemas.appointments import TERMINAL_STATUSES, AppointmentStatus
from app.schemas.users import UserRole

_ALL_ROLES = frozenset(UserRole)
_STAFF = frozenset({UserRole.DOCTOR, UserRole.ADMIN})

# (from, to) -> roles allowed to perform the transition
TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentStatus], frozenset[UserRole]] = {
    (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED): _STAFF,
    (AppointmentStatus.PENDING, AppointmentStatus.CANCELLED): _ALL_ROLES,
    (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED): _STAFF,
    (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED): _ALL_ROLES,
}


def is_terminal(status: AppointmentStatus | str) -> bool:
    """Check if no further transition is possible from a status."""
    return AppointmentStatus(status) in TERMINAL_STATUSES


def is_transition_allowed(
    current: AppointmentStatus | str,
    requested: AppointmentStatus | str,
    role: UserRole | str,
) -> bool:
    """Return True when ``role`` may move an appointment from ``current`` to ``requested``."""
    roles = TRANSITIONS.get((AppointmentStatus(current), AppointmentStatus(requested)))
    return roles is not None and UserRole(role) in roles


def allowed_targets(
    current: AppointmentStatus | str,
    role: UserRole | str,
) -> list[AppointmentStatus]:
    """List the statuses ``role`` may move an appointment to from ``current``."""
    current = AppointmentStatus(current)
    role = UserRole(role)
    return [
        target
        for (source, target), roles in TRANSITIONS.items()
        if source == current and role in roles
    ]


def check_transition(
    current: AppointmentStatus | str,
    requested: AppointmentStatus | str,
    role: UserRole | str,
) -> None:
    """
    Validate a status transition.

    Args:
        current: Current appointment status
        requested: Requested appointment status
        role: Role of the caller

    Raises:
        InvalidStateException: If the lifecycle graph has no such edge
        ForbiddenException: If the edge exists but not for this role
    """
    current = AppointmentStatus(current)
    requested = AppointmentStatus(requested)

    roles = TRANSITIONS.get((current, requested))
    if roles is None:
        if current in TERMINAL_STATUSES:
            raise InvalidStateException(
                f"Appointment is already {current.value} and cannot be changed"
            )
        raise InvalidStateException(
            f"Cannot change appointment status from {current.value} to {requested.value}"
        )

    if UserRole(role) not in roles:
        raise ForbiddenException(
            f"Role {UserRole(role).value} may not change appointment status "
            f"from {current.value} to {requested.value}"
        )
