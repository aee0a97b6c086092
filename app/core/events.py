"""Appointment domain events and the emitter that dispatches them."""

import inspect
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from app.schemas.appointments import AppointmentResponse, AppointmentStatus
from app.schemas.users import UserRole

logger = structlog.get_logger()


class EventType(str, Enum):
    """Appointment event type tags."""

    CREATED = "AppointmentCreated"
    UPDATED = "AppointmentUpdated"
    RESCHEDULED = "AppointmentRescheduled"
    CONFIRMED = "AppointmentConfirmed"
    COMPLETED = "AppointmentCompleted"
    CANCELLED = "AppointmentCancelled"
    DELETED = "AppointmentDeleted"


# Status a transition lands in -> event announcing it
STATUS_EVENTS: dict[AppointmentStatus, EventType] = {
    AppointmentStatus.CONFIRMED: EventType.CONFIRMED,
    AppointmentStatus.COMPLETED: EventType.COMPLETED,
    AppointmentStatus.CANCELLED: EventType.CANCELLED,
}


class AppointmentEvent(BaseModel):
    """Event payload: a type tag plus the full appointment snapshot."""

    event_type: EventType
    appointment: AppointmentResponse
    actor_id: UUID
    actor_role: UserRole
    previous_status: AppointmentStatus | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[AppointmentEvent], Awaitable[None] | None]


class EventEmitter:
    """Dispatches appointment events to subscribed handlers."""

    def __init__(self) -> None:
        """Initialize with no subscribers."""
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> EventHandler:
        """Register a handler; usable as a decorator."""
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def emit(self, event: AppointmentEvent) -> None:
        """
        Deliver an event to every handler.

        Called only after the state change it describes has been committed.
        A failing handler is logged and does not affect the others or the
        caller.

        Args:
            event: Event to deliver
        """
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # Log error but don't fail the request
                logger.warning(
                    "appointment_event_handler_failed",
                    event_type=event.event_type.value,
                    appointment_id=str(event.appointment.id),
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )


def audit_subscriber(event: AppointmentEvent) -> None:
    """Write an audit record for every appointment event."""
    appointment = event.appointment
    logger.info(
        "audit_event",
        event_type=event.event_type.value,
        appointment_id=str(appointment.id),
        actor_id=str(event.actor_id),
        actor_role=event.actor_role.value,
        previous_status=event.previous_status.value if event.previous_status else None,
        status=appointment.status.value,
        doctor_id=str(appointment.doctor_id),
        patient_id=str(appointment.patient_id),
        appointment_date=appointment.appointment_date.isoformat(),
        start_time=appointment.start_time.isoformat(),
        end_time=appointment.end_time.isoformat(),
        occurred_at=event.occurred_at.isoformat(),
    )


_NOTIFICATION_TITLES: dict[EventType, str] = {
    EventType.CREATED: "Appointment requested",
    EventType.RESCHEDULED: "Appointment rescheduled",
    EventType.CONFIRMED: "Appointment confirmed",
    EventType.COMPLETED: "Appointment completed",
    EventType.CANCELLED: "Appointment cancelled",
    EventType.DELETED: "Appointment removed",
}


def notification_subscriber(event: AppointmentEvent) -> None:
    """Queue a patient notification intent for user-visible events."""
    title = _NOTIFICATION_TITLES.get(event.event_type)
    if title is None:
        return

    appointment = event.appointment
    body = (
        f"{appointment.appointment_date.isoformat()} "
        f"{appointment.start_time.strftime('%H:%M')}-{appointment.end_time.strftime('%H:%M')}"
    )
    logger.info(
        "notification_requested",
        recipient_id=str(appointment.patient_id),
        title=title,
        body=body,
        event_type=event.event_type.value,
        appointment_id=str(appointment.id),
    )


def build_default_emitter() -> EventEmitter:
    """Create an emitter wired to the audit and notification subscribers."""
    emitter = EventEmitter()
    emitter.subscribe(audit_subscriber)
    emitter.subscribe(notification_subscriber)
    return emitter


# Process-wide emitter used by the API layer
event_emitter = build_default_emitter()
