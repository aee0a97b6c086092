"""Availability schemas for request/response validation."""

from datetime import date, time
from uuid import UUID

from pydantic import BaseModel, Field


class TimeSlot(BaseModel):
    """A bookable interval within one doctor's day."""

    start_time: time
    end_time: time
    is_booked: bool = False


class SlotInput(BaseModel):
    """Schema for one slot in an availability replacement."""

    start_time: time
    end_time: time


class AvailabilityUpdate(BaseModel):
    """Schema for replacing a doctor's slots for a day."""

    slots: list[SlotInput] = Field(default_factory=list, max_length=200)


class AvailabilityResponse(BaseModel):
    """Schema for a doctor's slots on a day."""

    doctor_id: UUID
    day: date
    slots: list[TimeSlot]


class ReconcileResponse(BaseModel):
    """Schema for a slot flag reconciliation result."""

    doctor_id: UUID
    day: date
    updated: int
