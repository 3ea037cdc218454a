"""Appointment scheduling endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from app.dependencies import Identity, Scheduler
from app.schemas.appointments import (
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    ConflictCheckRequest,
    ConflictCheckResponse,
    RecurringAppointmentCreate,
    RescheduleRequest,
    SchedulingResponse,
    SchedulingState,
)
from app.services.appointment_scheduler import SchedulingOperation

router = APIRouter()


def _scheduling_response(
    operation: SchedulingOperation,
    response: Response,
) -> SchedulingResponse:
    """201 once committed, 200 while the caller still has to confirm conflicts."""
    if operation.state == SchedulingState.DONE:
        response.status_code = status.HTTP_201_CREATED
    else:
        response.status_code = status.HTTP_200_OK
    return operation.to_response()


@router.post(
    "/",
    response_model=SchedulingResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    identity: Identity,
    scheduler: Scheduler,
    response: Response,
) -> SchedulingResponse:
    """
    Book a single appointment for the authenticated clinic.

    Overlapping bookings are reported back with state
    ``awaiting_confirmation``; resubmit with ``confirm_conflicts`` to proceed.
    """
    operation = await scheduler.create_single(identity, data)
    return _scheduling_response(operation, response)


@router.post(
    "/recurring",
    response_model=SchedulingResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create recurring appointment",
)
async def create_recurring_appointment(
    data: RecurringAppointmentCreate,
    identity: Identity,
    scheduler: Scheduler,
    response: Response,
) -> SchedulingResponse:
    """
    Expand a recurrence and book every occurrence as one batch.

    Conflicts of all occurrences are returned together and nothing is saved
    until the request is resubmitted with ``confirm_conflicts``.
    """
    operation = await scheduler.create_recurring(identity, data)
    return _scheduling_response(operation, response)


@router.post(
    "/conflicts/check",
    response_model=ConflictCheckResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check an interval for conflicts",
)
async def check_conflicts(
    data: ConflictCheckRequest,
    identity: Identity,
    scheduler: Scheduler,
) -> ConflictCheckResponse:
    """Report every active appointment overlapping the interval."""
    conflicts = await scheduler.check_conflicts(
        identity,
        data.start_time,
        data.end_time,
        exclude_id=data.exclude_appointment_id,
    )
    return ConflictCheckResponse(has_conflicts=bool(conflicts), conflicts=conflicts)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    identity: Identity,
    scheduler: Scheduler,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
) -> AppointmentListResponse:
    """
    List the clinic's appointments ordered by start time.

    Args:
        identity: Authenticated clinic
        scheduler: Appointment scheduler
        status_filter: Filter by status
        from_date: Only appointments ending after this instant
        to_date: Only appointments starting before this instant

    Returns:
        Matching appointments
    """
    filters = AppointmentFilters(status=status_filter, from_date=from_date, to_date=to_date)
    items = await scheduler.list_appointments(identity, filters)
    return AppointmentListResponse(total=len(items), items=items)


@router.get(
    "/{appointment_id}",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    identity: Identity,
    scheduler: Scheduler,
) -> Appointment:
    """Get a specific appointment of the clinic."""
    return await scheduler.get_appointment(identity, appointment_id)


@router.patch(
    "/{appointment_id}/time",
    response_model=SchedulingResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    identity: Identity,
    scheduler: Scheduler,
) -> SchedulingResponse:
    """
    Move one appointment to a new interval.

    Only this appointment changes, even when it belongs to a recurrence.
    """
    operation = await scheduler.reschedule(
        identity,
        appointment_id,
        data.start_time,
        data.end_time,
        confirm_conflicts=data.confirm_conflicts,
    )
    return operation.to_response()


@router.patch(
    "/{appointment_id}/status",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    identity: Identity,
    scheduler: Scheduler,
) -> Appointment:
    """Mark an appointment completed, cancelled or no-show."""
    return await scheduler.update_status(identity, appointment_id, data.status)
