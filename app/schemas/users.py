"""User schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class UserRole(str, Enum):
    """Caller role enumeration."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Caller(BaseModel):
    """Authenticated identity an operation is performed on behalf of."""

    id: UUID
    role: UserRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        """Check if the caller is an administrator."""
        return self.role == UserRole.ADMIN


class UserResponse(BaseModel):
    """User schema for API responses."""

    id: UUID
    email: str
    full_name: str | None = None
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
