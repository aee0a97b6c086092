"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Table,
    Text,
    Time,
    Uuid,
    func,
    text,
)

from app.models.base import metadata

ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'confirmed')"

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    # Ownership / references
    Column(
        "patient_id",
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "doctor_id",
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    # Appointment details
    Column("appointment_date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("reason", Text, nullable=False),
    Column("notes", Text, nullable=True),
    Column("mode", Text, nullable=False, server_default=text("'in-person'")),
    # Status management
    Column("status", Text, nullable=False, server_default=text("'pending'")),
    Column("created_by", Uuid(as_uuid=True), nullable=False),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'completed', 'cancelled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "mode IN ('in-person', 'telehealth')",
        name="appointments_mode_check",
    ),
    CheckConstraint("end_time > start_time", name="appointments_interval_check"),
)

Index("idx_appointments_doctor_date", appointments.c.doctor_id, appointments.c.appointment_date)

# At most one active appointment may start at a given doctor/date/time.
# IntegrityError on this index surfaces as SlotConflictException.
Index(
    "uq_appointments_active_doctor_slot",
    appointments.c.doctor_id,
    appointments.c.appointment_date,
    appointments.c.start_time,
    unique=True,
    postgresql_where=text(ACTIVE_STATUS_CLAUSE),
    sqlite_where=text(ACTIVE_STATUS_CLAUSE),
)
