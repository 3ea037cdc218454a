"""Time-overlap conflict detection between appointments of one clinic."""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from app.core.exceptions import ValidationException
from app.schemas.appointments import Appointment


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """
    Half-open interval overlap test.

    ``[a_start, a_end)`` and ``[b_start, b_end)`` overlap iff each starts
    before the other ends; touching endpoints do not overlap.
    """
    return a_start < b_end and a_end > b_start


def occupies_calendar(appointment: Appointment) -> bool:
    """Whether an appointment blocks its time slot."""
    return appointment.status.occupies_time


def find_conflicts(
    clinic_id: UUID,
    candidate_start: datetime,
    candidate_end: datetime,
    existing: Iterable[Appointment],
    exclude_id: UUID | None = None,
) -> list[Appointment]:
    """
    Return every existing appointment overlapping a candidate interval.

    Only appointments of ``clinic_id`` that still occupy time are considered,
    and ``exclude_id`` (the appointment being edited) is never reported.
    Results keep the order of ``existing``.

    Raises:
        ValidationException: If the candidate interval is empty or inverted
    """
    if candidate_end <= candidate_start:
        raise ValidationException("End time must be after start time")

    return [
        appointment
        for appointment in existing
        if appointment.clinic_id == clinic_id
        and appointment.id != exclude_id
        and occupies_calendar(appointment)
        and intervals_overlap(
            candidate_start,
            candidate_end,
            appointment.start_time,
            appointment.end_time,
        )
    ]
