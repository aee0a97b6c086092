"""User directory lookups for scheduling participants."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.models.users import users
from app.schemas.users import UserRole


class UserService:
    """Service for user operations."""

    async def get_user_by_id(self, db: AsyncSession, user_id: UUID) -> dict | None:
        """Get user by internal ID."""
        query = select(users).where(users.c.id == user_id)
        result = await db.execute(query)
        user = result.mappings().first()
        return dict(user) if user else None

    async def get_active_participant(
        self,
        db: AsyncSession,
        user_id: UUID,
        role: UserRole,
    ) -> dict:
        """
        Resolve an active patient or doctor.

        Args:
            db: Database session
            user_id: ID of the user to resolve
            role: Role the user must hold

        Returns:
            User data from database

        Raises:
            NotFoundException: If no active user with that role exists
        """
        user = await self.get_user_by_id(db, user_id)
        label = role.value.capitalize()

        if not user or user["role"] != role.value:
            raise NotFoundException(f"{label} not found")

        if not user["is_active"]:
            raise NotFoundException(f"{label} not found or inactive")

        return user
