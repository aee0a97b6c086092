"""Doctor slot inventory table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Table,
    Time,
    UniqueConstraint,
    Uuid,
    func,
    text,
)

from app.models.base import metadata

doctor_slots = Table(
    "doctor_slots",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    Column(
        "doctor_id",
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("day", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    # Cache over the active appointment set
    Column("is_booked", Boolean, nullable=False, server_default=text("false")),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint("doctor_id", "day", "start_time", name="uq_doctor_slots_doctor_day_start"),
    CheckConstraint("end_time > start_time", name="doctor_slots_interval_check"),
)
