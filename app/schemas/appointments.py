"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class AppointmentMode(str, Enum):
    """Appointment mode enumeration."""

    IN_PERSON = "in-person"
    TELEHEALTH = "telehealth"


# Patch fields that move an appointment in time or to another doctor
SCHEDULE_FIELDS = frozenset({"doctor_id", "appointment_date", "start_time", "end_time"})


class AppointmentBase(BaseModel):
    """Base appointment schema with common fields."""

    appointment_date: date
    start_time: time
    end_time: time
    reason: str = Field(..., min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    mode: AppointmentMode = AppointmentMode.IN_PERSON


class AppointmentCreate(AppointmentBase):
    """Schema for creating a new appointment."""

    doctor_id: UUID
    patient_id: UUID | None = Field(
        None,
        description="Required when a doctor or admin books on behalf of a patient",
    )

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Reject whitespace-only reasons."""
        if not v.strip():
            raise ValueError("Reason is required")
        return v.strip()

    @field_validator("end_time")
    @classmethod
    def validate_end_time(cls, v: time, info: Any) -> time:
        """Validate end time is after start time."""
        start = info.data.get("start_time")
        if start is not None and v <= start:
            raise ValueError("End time must be after start time")
        return v


class AppointmentUpdate(BaseModel):
    """Schema for a partial appointment update."""

    doctor_id: UUID | None = None
    appointment_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = Field(None, min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    mode: AppointmentMode | None = None
    status: AppointmentStatus | None = None


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    reason: str
    notes: str | None = None
    mode: AppointmentMode
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        """Check if the appointment still holds its time interval."""
        return self.status in ACTIVE_STATUSES


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
