"""Appointment schemas for request/response validation."""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

from app.schemas.recurrence import RecurrenceRule


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def occupies_time(self) -> bool:
        """Cancelled and no-show appointments leave their slot free."""
        return self not in (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)


class SchedulingState(str, Enum):
    """States of a check -> confirm -> commit scheduling operation."""

    CHECKING = "checking"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMMITTING = "committing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


def ensure_aware(v: datetime) -> datetime:
    """Attach UTC to naive timestamps."""
    return v.replace(tzinfo=UTC) if v.tzinfo is None else v


# Recurrence linkage variants


class Standalone(BaseModel):
    """Appointment outside any recurrence."""

    kind: Literal["standalone"] = "standalone"


class RecurrenceParent(BaseModel):
    """Anchor appointment holding the recurrence rule."""

    kind: Literal["parent"] = "parent"
    rule: RecurrenceRule


class RecurrenceChild(BaseModel):
    """Generated occurrence linked back to its parent."""

    kind: Literal["child"] = "child"
    parent_id: UUID


RecurrenceLink = Annotated[
    Standalone | RecurrenceParent | RecurrenceChild,
    Field(discriminator="kind"),
]


class Appointment(BaseModel):
    """A scheduled clinic event as stored and returned by the API."""

    id: UUID
    clinic_id: UUID
    patient_id: UUID
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    recurrence: RecurrenceLink = Field(default_factory=Standalone)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_recurring(self) -> bool:
        """True only on a recurrence parent."""
        return isinstance(self.recurrence, RecurrenceParent)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def recurrence_parent_id(self) -> UUID | None:
        """Parent id for recurrence children."""
        if isinstance(self.recurrence, RecurrenceChild):
            return self.recurrence.parent_id
        return None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def recurrence_rule(self) -> str | None:
        """RRULE text for recurrence parents."""
        if isinstance(self.recurrence, RecurrenceParent):
            return self.recurrence.rule.to_rrule_string()
        return None


class SchedulingIdentity(BaseModel):
    """Authenticated context passed explicitly into every scheduling call."""

    clinic_id: UUID | None = None


class AppointmentCreate(BaseModel):
    """Schema for creating a single appointment."""

    patient_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    confirm_conflicts: bool = Field(
        default=False,
        description="Proceed even if the check reports overlapping appointments",
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return ensure_aware(v)


class RecurringAppointmentCreate(AppointmentCreate):
    """Template appointment plus the rule used to expand it."""

    recurrence: RecurrenceRule


class RescheduleRequest(BaseModel):
    """New interval for a single appointment (drag-and-drop or edit)."""

    start_time: datetime
    end_time: datetime
    confirm_conflicts: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return ensure_aware(v)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus


class ConflictCheckRequest(BaseModel):
    """Read-only conflict check for a candidate interval."""

    start_time: datetime
    end_time: datetime
    exclude_appointment_id: UUID | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return ensure_aware(v)


class ConflictingAppointment(BaseModel):
    """Existing booking that overlaps a candidate interval."""

    id: UUID
    title: str
    patient_id: UUID
    patient_name: str | None = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus


class OccurrenceConflict(BaseModel):
    """Conflicts found for one candidate occurrence."""

    occurrence_index: int = Field(..., ge=0)
    start_time: datetime
    end_time: datetime
    conflicts: list[ConflictingAppointment]


class ConflictWarning(BaseModel):
    """Soft conflict result the caller must acknowledge to proceed."""

    message: str
    occurrences: list[OccurrenceConflict]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_conflicts(self) -> int:
        """Number of distinct existing appointments involved."""
        return len({c.id for occ in self.occurrences for c in occ.conflicts})


class ConflictCheckResponse(BaseModel):
    """Result of a read-only conflict check."""

    has_conflicts: bool
    conflicts: list[ConflictingAppointment]


class SchedulingResponse(BaseModel):
    """Outcome of a scheduling request."""

    state: SchedulingState
    appointments: list[Appointment] = Field(default_factory=list)
    warning: ConflictWarning | None = None


class AppointmentListResponse(BaseModel):
    """Schema for appointment list response."""

    total: int
    items: list[Appointment]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None

    @field_validator("from_date", "to_date")
    @classmethod
    def ensure_timezone(cls, v: datetime | None) -> datetime | None:
        """Treat naive bounds as UTC."""
        return ensure_aware(v) if v is not None else None
