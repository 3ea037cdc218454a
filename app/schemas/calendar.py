"""Calendar projection schemas."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.schemas.appointments import AppointmentStatus, ensure_aware


class CalendarView(str, Enum):
    """Calendar granularity."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class CalendarNavigation(str, Enum):
    """Toolbar navigation actions."""

    PREV = "prev"
    NEXT = "next"
    TODAY = "today"


class CalendarEvent(BaseModel):
    """One appointment as rendered on the calendar."""

    id: UUID
    title: str
    start: datetime
    end: datetime
    status: AppointmentStatus
    patient_id: UUID
    is_recurring: bool = False
    recurrence_parent_id: UUID | None = None
    has_conflict: bool = False


class CalendarModel(BaseModel):
    """Renderable calendar for one view window."""

    view: CalendarView
    anchor_date: date
    range_start: datetime
    range_end: datetime
    events: list[CalendarEvent] = Field(default_factory=list)


class CalendarMove(BaseModel):
    """Drag or resize result to be routed through rescheduling."""

    event_id: UUID
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return ensure_aware(v)


class CalendarMoveRequest(CalendarMove):
    """Drag or resize submitted by the calendar UI."""

    confirm_conflicts: bool = False
