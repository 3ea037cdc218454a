"""Read-side calendar projection of appointment records."""

from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from uuid import UUID

from dateutil.relativedelta import relativedelta

from app.core.exceptions import NotFoundException, ValidationException
from app.scheduling.conflicts import intervals_overlap, occupies_calendar
from app.schemas.appointments import Appointment
from app.schemas.calendar import (
    CalendarEvent,
    CalendarModel,
    CalendarMove,
    CalendarNavigation,
    CalendarView,
)


def _week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


class CalendarProjection:
    """
    Maps appointments into a day/week/month calendar model.

    The view and anchor date are presentational state only. The projection
    never writes: drag and resize produce a :class:`CalendarMove` that the
    caller hands to the scheduler.
    """

    def __init__(
        self,
        view: CalendarView = CalendarView.WEEK,
        anchor_date: date | None = None,
        tz: tzinfo = UTC,
    ):
        """Initialize projection state."""
        self.view = view
        self.anchor_date = anchor_date or datetime.now(tz).date()
        self.tz = tz
        self._loaded_ids: set[UUID] = set()

    def set_view(self, view: CalendarView) -> None:
        """Switch granularity, keeping the anchor date."""
        self.view = view

    def navigate(self, action: CalendarNavigation, today: date | None = None) -> date:
        """Move the anchor date one view window back or forward, or to today."""
        if action == CalendarNavigation.TODAY:
            self.anchor_date = today or datetime.now(self.tz).date()
        else:
            step = 1 if action == CalendarNavigation.NEXT else -1
            if self.view == CalendarView.DAY:
                self.anchor_date += timedelta(days=step)
            elif self.view == CalendarView.WEEK:
                self.anchor_date += timedelta(weeks=step)
            else:
                self.anchor_date += relativedelta(months=step)
        return self.anchor_date

    def visible_range(self) -> tuple[datetime, datetime]:
        """Half-open ``[start, end)`` window covered by the current view."""
        if self.view == CalendarView.DAY:
            first = self.anchor_date
            last = first
        elif self.view == CalendarView.WEEK:
            first = _week_start(self.anchor_date)
            last = first + timedelta(days=6)
        else:
            month_start = self.anchor_date.replace(day=1)
            month_end = month_start + relativedelta(months=1, days=-1)
            first = _week_start(month_start)
            last = _week_start(month_end) + timedelta(days=6)

        start = datetime.combine(first, time.min, tzinfo=self.tz)
        end = datetime.combine(last + timedelta(days=1), time.min, tzinfo=self.tz)
        return start, end

    def project(self, appointments: Iterable[Appointment]) -> CalendarModel:
        """
        Build the calendar model for the current view.

        Events intersecting the visible window are returned in start order;
        ``has_conflict`` is set on every active event overlapping another
        visible active event of the same clinic.
        """
        range_start, range_end = self.visible_range()
        loaded = list(appointments)
        self._loaded_ids = {a.id for a in loaded}
        visible = sorted(
            (
                a
                for a in loaded
                if intervals_overlap(a.start_time, a.end_time, range_start, range_end)
            ),
            key=lambda a: (a.start_time, a.end_time),
        )

        conflicted = _conflicting_ids(visible)
        events = [
            CalendarEvent(
                id=a.id,
                title=a.title,
                start=a.start_time,
                end=a.end_time,
                status=a.status,
                patient_id=a.patient_id,
                is_recurring=a.is_recurring,
                recurrence_parent_id=a.recurrence_parent_id,
                has_conflict=a.id in conflicted,
            )
            for a in visible
        ]
        return CalendarModel(
            view=self.view,
            anchor_date=self.anchor_date,
            range_start=range_start,
            range_end=range_end,
            events=events,
        )

    def move_event(self, event_id: UUID, new_start: datetime, new_end: datetime) -> CalendarMove:
        """
        Translate a drag or resize into a reschedule request.

        Raises:
            NotFoundException: If the event was not among the projected appointments
            ValidationException: If the new interval is empty or inverted
        """
        if event_id not in self._loaded_ids:
            raise NotFoundException("Appointment not found on calendar")
        if new_end <= new_start:
            raise ValidationException("End time must be after start time")
        return CalendarMove(event_id=event_id, start_time=new_start, end_time=new_end)


def _conflicting_ids(visible: list[Appointment]) -> set[UUID]:
    """Sweep start-sorted appointments per clinic and collect overlapping ids."""
    by_clinic: dict[UUID, list[Appointment]] = defaultdict(list)
    for appointment in visible:
        if occupies_calendar(appointment):
            by_clinic[appointment.clinic_id].append(appointment)

    conflicted: set[UUID] = set()
    for active in by_clinic.values():
        for i, current in enumerate(active):
            for other in active[i + 1 :]:
                # Sorted by start: every later entry also starts after current ends
                if other.start_time >= current.end_time:
                    break
                if intervals_overlap(
                    current.start_time, current.end_time, other.start_time, other.end_time
                ):
                    conflicted.update((current.id, other.id))
    return conflicted
