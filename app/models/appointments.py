"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.models.patients import metadata

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Tenant / references
    Column("clinic_id", UUID(as_uuid=True), nullable=False),
    Column(
        "patient_id",
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    ),
    # Details
    Column("title", Text, nullable=False),
    Column("description", Text, nullable=True),
    Column("start_time", TIMESTAMP(timezone=True), nullable=False),
    Column("end_time", TIMESTAMP(timezone=True), nullable=False),
    Column("status", Text, nullable=False, server_default="scheduled"),
    # Recurrence linkage: parent holds the rule, children point at the parent
    Column("is_recurring", Boolean, nullable=False, server_default=text("false")),
    Column("recurrence_rule", Text, nullable=True),
    Column(
        "recurrence_parent_id",
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=True,
    ),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint("end_time > start_time", name="appointments_time_range_check"),
    CheckConstraint(
        "NOT (is_recurring AND recurrence_parent_id IS NOT NULL)",
        name="appointments_recurrence_kind_check",
    ),
    Index("ix_appointments_clinic_start", "clinic_id", "start_time"),
)
