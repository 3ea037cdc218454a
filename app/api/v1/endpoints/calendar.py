"""Calendar projection endpoints."""

from datetime import date
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Query, status

from app.core.exceptions import ValidationException
from app.dependencies import Identity, Scheduler
from app.scheduling.projection import CalendarProjection
from app.schemas.appointments import AppointmentFilters, SchedulingResponse
from app.schemas.calendar import CalendarModel, CalendarMoveRequest, CalendarView

router = APIRouter()


def _zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationException(f"Unknown time zone: {tz}") from e


@router.get(
    "/",
    response_model=CalendarModel,
    status_code=status.HTTP_200_OK,
    tags=["Calendar"],
    summary="Calendar view",
)
async def get_calendar(
    identity: Identity,
    scheduler: Scheduler,
    view: CalendarView = Query(CalendarView.WEEK),
    anchor: date | None = Query(None, alias="date"),
    tz: str = Query("UTC"),
) -> CalendarModel:
    """
    Render the clinic's appointments for a day, week or month.

    Args:
        identity: Authenticated clinic
        scheduler: Appointment scheduler
        view: Calendar granularity
        anchor: Date the view is anchored on (defaults to today)
        tz: IANA time zone the view boundaries are computed in

    Returns:
        Calendar model with per-event conflict highlighting
    """
    projection = CalendarProjection(view=view, anchor_date=anchor, tz=_zone(tz))
    range_start, range_end = projection.visible_range()
    appointments = await scheduler.list_appointments(
        identity,
        AppointmentFilters(from_date=range_start, to_date=range_end),
    )
    return projection.project(appointments)


@router.post(
    "/move",
    response_model=SchedulingResponse,
    status_code=status.HTTP_200_OK,
    tags=["Calendar"],
    summary="Drag or resize an event",
)
async def move_event(
    data: CalendarMoveRequest,
    identity: Identity,
    scheduler: Scheduler,
) -> SchedulingResponse:
    """
    Route a drag or resize through rescheduling.

    The projection only validates the move; the scheduler runs the usual
    conflict check and confirmation flow.
    """
    appointment = await scheduler.get_appointment(identity, data.event_id)
    projection = CalendarProjection(anchor_date=data.start_time.date())
    projection.project([appointment])
    move = projection.move_event(data.event_id, data.start_time, data.end_time)

    operation = await scheduler.reschedule(
        identity,
        move.event_id,
        move.start_time,
        move.end_time,
        confirm_conflicts=data.confirm_conflicts,
    )
    return operation.to_response()
