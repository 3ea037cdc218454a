"""Appointment scheduling: recurrence expansion, conflict checks and commits."""

from collections.abc import Iterable, Sequence
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID, uuid4

import structlog

from app.core.exceptions import (
    NotFoundException,
    PersistenceException,
    SchedulingStateError,
    UnauthorizedException,
    ValidationException,
)
from app.scheduling.conflicts import find_conflicts
from app.scheduling.recurrence import (
    DEFAULT_OCCURRENCE_LIMIT,
    MAX_OCCURRENCE_LIMIT,
    RecurrenceExpander,
)
from app.schemas.appointments import (
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStatus,
    ConflictingAppointment,
    ConflictWarning,
    OccurrenceConflict,
    RecurrenceChild,
    RecurrenceParent,
    RecurringAppointmentCreate,
    SchedulingIdentity,
    SchedulingResponse,
    SchedulingState,
    Standalone,
)

logger = structlog.get_logger()


class AppointmentStore(Protocol):
    """Storage collaborator used by the scheduler."""

    async def list_appointments(
        self, clinic_id: UUID, filters: AppointmentFilters | None = None
    ) -> list[Appointment]: ...

    async def get_appointment(
        self, clinic_id: UUID, appointment_id: UUID
    ) -> Appointment | None: ...

    async def insert_appointment(self, record: Appointment) -> Appointment: ...

    async def insert_many(self, records: Sequence[Appointment]) -> list[Appointment]: ...

    async def update_appointment_time(
        self, clinic_id: UUID, appointment_id: UUID, start_time: datetime, end_time: datetime
    ) -> Appointment | None: ...

    async def update_appointment_status(
        self, clinic_id: UUID, appointment_id: UUID, status: AppointmentStatus
    ) -> Appointment | None: ...


class PatientDirectory(Protocol):
    """Patient lookup collaborator used by the scheduler."""

    async def patient_exists(self, clinic_id: UUID, patient_id: UUID) -> bool: ...

    async def get_display_names(
        self, clinic_id: UUID, patient_ids: Iterable[UUID]
    ) -> dict[UUID, str]: ...


class OperationKind(str, Enum):
    """What a scheduling operation will write on commit."""

    SINGLE = "single"
    RECURRING = "recurring"
    RESCHEDULE = "reschedule"


_TRANSITIONS: dict[SchedulingState, frozenset[SchedulingState]] = {
    SchedulingState.CHECKING: frozenset(
        {SchedulingState.AWAITING_CONFIRMATION, SchedulingState.COMMITTING}
    ),
    SchedulingState.AWAITING_CONFIRMATION: frozenset(
        {SchedulingState.COMMITTING, SchedulingState.ABORTED}
    ),
    SchedulingState.COMMITTING: frozenset(
        {
            SchedulingState.DONE,
            SchedulingState.FAILED,
            SchedulingState.AWAITING_CONFIRMATION,
        }
    ),
    SchedulingState.DONE: frozenset(),
    SchedulingState.ABORTED: frozenset(),
    SchedulingState.FAILED: frozenset(),
}


class SchedulingOperation:
    """
    One check -> confirm -> commit scheduling attempt.

    ``drafts`` are the records the operation will write (for a reschedule,
    the moved appointment). Nothing is persisted before ``COMMITTING``, so an
    operation abandoned while awaiting confirmation leaves no state behind.
    """

    def __init__(
        self,
        kind: OperationKind,
        clinic_id: UUID,
        drafts: list[Appointment],
        exclude_id: UUID | None = None,
    ):
        """Initialize operation in the checking state."""
        self.kind = kind
        self.clinic_id = clinic_id
        self.drafts = drafts
        self.exclude_id = exclude_id
        self.state = SchedulingState.CHECKING
        self.conflicts: list[OccurrenceConflict] = []
        self.appointments: list[Appointment] = []

    def transition(self, new_state: SchedulingState) -> None:
        """Move to ``new_state`` or raise on an illegal transition."""
        if new_state not in _TRANSITIONS[self.state]:
            raise SchedulingStateError(
                f"Cannot move scheduling operation from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    @property
    def awaiting_confirmation(self) -> bool:
        """Whether the caller must confirm or abort."""
        return self.state == SchedulingState.AWAITING_CONFIRMATION

    @property
    def warning(self) -> ConflictWarning | None:
        """Conflict summary, if the check found any."""
        if not self.conflicts:
            return None
        flagged = len(self.conflicts)
        noun = "occurrence overlaps" if flagged == 1 else "occurrences overlap"
        return ConflictWarning(
            message=f"{flagged} {noun} existing appointments",
            occurrences=self.conflicts,
        )

    def acknowledged_pairs(self) -> set[tuple[int, UUID]]:
        """(occurrence index, appointment id) pairs already shown to the caller."""
        return {(occ.occurrence_index, c.id) for occ in self.conflicts for c in occ.conflicts}

    def to_response(self) -> SchedulingResponse:
        """Render the operation outcome."""
        return SchedulingResponse(
            state=self.state,
            appointments=self.appointments,
            warning=self.warning,
        )


class AppointmentScheduler:
    """
    Decides what to persist for scheduling requests.

    Conflicts follow a soft policy: they hold the commit until the caller
    confirms, and never reject a booking outright. Identity is passed into
    every call explicitly.
    """

    def __init__(
        self,
        store: AppointmentStore,
        patients: PatientDirectory,
        default_occurrence_count: int = DEFAULT_OCCURRENCE_LIMIT,
        max_occurrence_count: int = MAX_OCCURRENCE_LIMIT,
        recheck_on_confirm: bool = True,
    ):
        """Initialize scheduler with its collaborators."""
        self.store = store
        self.patients = patients
        self.expander = RecurrenceExpander(
            default_count=default_occurrence_count,
            max_count=max_occurrence_count,
        )
        self.recheck_on_confirm = recheck_on_confirm

    # Scheduling operations

    async def create_single(
        self,
        identity: SchedulingIdentity,
        data: AppointmentCreate,
    ) -> SchedulingOperation:
        """
        Check and, when free or confirmed, book a standalone appointment.

        Raises:
            UnauthorizedException: If no clinic is authenticated
            ValidationException: If the interval is empty or inverted
            NotFoundException: If the patient is unknown to the clinic
            PersistenceException: If the write fails
        """
        clinic_id = self._require_clinic(identity)
        _require_interval(data.start_time, data.end_time)
        await self._require_patient(clinic_id, data.patient_id)

        draft = _draft(clinic_id, data, data.start_time, data.end_time, Standalone())
        operation = SchedulingOperation(OperationKind.SINGLE, clinic_id, [draft])
        return await self._check_and_maybe_commit(operation, data.confirm_conflicts)

    async def create_recurring(
        self,
        identity: SchedulingIdentity,
        data: RecurringAppointmentCreate,
    ) -> SchedulingOperation:
        """
        Expand a recurrence and book all occurrences as one batch.

        The first occurrence becomes the recurrence parent carrying the rule;
        the rest are children linked to it. Conflicts of every occurrence are
        aggregated before anything is written.

        Raises:
            UnauthorizedException: If no clinic is authenticated
            ValidationException: If the interval or the rule is invalid
            NotFoundException: If the patient is unknown to the clinic
            PersistenceException: If the batch write fails
        """
        clinic_id = self._require_clinic(identity)
        _require_interval(data.start_time, data.end_time)
        occurrences = self.expander.expand(data.recurrence, data.start_time, data.end_time)
        await self._require_patient(clinic_id, data.patient_id)

        parent = _draft(
            clinic_id,
            data,
            occurrences[0].start_time,
            occurrences[0].end_time,
            RecurrenceParent(rule=data.recurrence),
        )
        children = [
            _draft(
                clinic_id,
                data,
                occurrence.start_time,
                occurrence.end_time,
                RecurrenceChild(parent_id=parent.id),
            )
            for occurrence in occurrences[1:]
        ]

        logger.info(
            "recurrence_expanded",
            clinic_id=str(clinic_id),
            rule=data.recurrence.to_rrule_string(),
            occurrences=len(occurrences),
        )

        operation = SchedulingOperation(OperationKind.RECURRING, clinic_id, [parent, *children])
        return await self._check_and_maybe_commit(operation, data.confirm_conflicts)

    async def reschedule(
        self,
        identity: SchedulingIdentity,
        appointment_id: UUID,
        new_start: datetime,
        new_end: datetime,
        confirm_conflicts: bool = False,
    ) -> SchedulingOperation:
        """
        Move one appointment to a new interval.

        Recurrence siblings are not reconsidered; the appointment itself is
        excluded from its own conflict check.

        Raises:
            UnauthorizedException: If no clinic is authenticated
            ValidationException: If the interval is empty or inverted
            NotFoundException: If the appointment is unknown to the clinic
            PersistenceException: If the update fails
        """
        clinic_id = self._require_clinic(identity)
        _require_interval(new_start, new_end)
        current = await self._require_appointment(clinic_id, appointment_id)

        moved = current.model_copy(update={"start_time": new_start, "end_time": new_end})
        operation = SchedulingOperation(
            OperationKind.RESCHEDULE,
            clinic_id,
            [moved],
            exclude_id=appointment_id,
        )
        return await self._check_and_maybe_commit(operation, confirm_conflicts)

    async def confirm(self, operation: SchedulingOperation) -> SchedulingOperation:
        """
        Proceed with an operation awaiting confirmation.

        When re-checking is enabled, conflicts that appeared after the caller
        was warned send the operation back to awaiting confirmation.
        """
        operation.transition(SchedulingState.COMMITTING)

        if self.recheck_on_confirm:
            acknowledged = operation.acknowledged_pairs()
            fresh = await self._collect_conflicts(operation)
            fresh_pairs = {(occ.occurrence_index, c.id) for occ in fresh for c in occ.conflicts}
            if fresh_pairs - acknowledged:
                operation.conflicts = fresh
                operation.transition(SchedulingState.AWAITING_CONFIRMATION)
                logger.info(
                    "appointment_conflicts_changed",
                    clinic_id=str(operation.clinic_id),
                    flagged_occurrences=len(fresh),
                )
                return operation

        return await self._commit(operation)

    def abort(self, operation: SchedulingOperation) -> SchedulingOperation:
        """Abandon an operation awaiting confirmation; nothing was written."""
        operation.transition(SchedulingState.ABORTED)
        logger.info(
            "scheduling_aborted",
            clinic_id=str(operation.clinic_id),
            kind=operation.kind.value,
        )
        return operation

    # Read and status operations

    async def check_conflicts(
        self,
        identity: SchedulingIdentity,
        start_time: datetime,
        end_time: datetime,
        exclude_id: UUID | None = None,
    ) -> list[ConflictingAppointment]:
        """Read-only conflict check for a candidate interval."""
        clinic_id = self._require_clinic(identity)
        _require_interval(start_time, end_time)

        existing = await self.store.list_appointments(clinic_id)
        conflicts = find_conflicts(clinic_id, start_time, end_time, existing, exclude_id)
        return await self._describe(clinic_id, conflicts)

    async def list_appointments(
        self,
        identity: SchedulingIdentity,
        filters: AppointmentFilters | None = None,
    ) -> list[Appointment]:
        """List the authenticated clinic's appointments."""
        clinic_id = self._require_clinic(identity)
        if (
            filters
            and filters.from_date
            and filters.to_date
            and filters.to_date <= filters.from_date
        ):
            raise ValidationException("to_date must be after from_date")
        return await self.store.list_appointments(clinic_id, filters)

    async def get_appointment(
        self,
        identity: SchedulingIdentity,
        appointment_id: UUID,
    ) -> Appointment:
        """Get one appointment of the authenticated clinic."""
        clinic_id = self._require_clinic(identity)
        return await self._require_appointment(clinic_id, appointment_id)

    async def update_status(
        self,
        identity: SchedulingIdentity,
        appointment_id: UUID,
        status: AppointmentStatus,
    ) -> Appointment:
        """Change an appointment's status without touching its interval."""
        clinic_id = self._require_clinic(identity)
        await self._require_appointment(clinic_id, appointment_id)

        updated = await self.store.update_appointment_status(clinic_id, appointment_id, status)
        if updated is None:
            raise NotFoundException("Appointment not found")

        logger.info(
            "appointment_status_updated",
            clinic_id=str(clinic_id),
            appointment_id=str(appointment_id),
            status=status.value,
        )
        return updated

    # Internals

    async def _check_and_maybe_commit(
        self,
        operation: SchedulingOperation,
        confirmed: bool,
    ) -> SchedulingOperation:
        operation.conflicts = await self._collect_conflicts(operation)

        if operation.conflicts:
            logger.info(
                "appointment_conflicts_found",
                clinic_id=str(operation.clinic_id),
                kind=operation.kind.value,
                flagged_occurrences=len(operation.conflicts),
                confirmed=confirmed,
            )
            if not confirmed:
                operation.transition(SchedulingState.AWAITING_CONFIRMATION)
                return operation

        operation.transition(SchedulingState.COMMITTING)
        return await self._commit(operation)

    async def _collect_conflicts(self, operation: SchedulingOperation) -> list[OccurrenceConflict]:
        # Cancelled and no-show records hold no slot
        active = [(i, d) for i, d in enumerate(operation.drafts) if d.status.occupies_time]
        if not active:
            return []

        existing = await self.store.list_appointments(operation.clinic_id)

        flagged: list[tuple[int, Appointment, list[Appointment]]] = []
        for index, draft in active:
            overlapping = find_conflicts(
                operation.clinic_id,
                draft.start_time,
                draft.end_time,
                existing,
                exclude_id=operation.exclude_id,
            )
            if overlapping:
                flagged.append((index, draft, overlapping))

        if not flagged:
            return []

        names = await self.patients.get_display_names(
            operation.clinic_id,
            {a.patient_id for _, _, overlapping in flagged for a in overlapping},
        )
        return [
            OccurrenceConflict(
                occurrence_index=index,
                start_time=draft.start_time,
                end_time=draft.end_time,
                conflicts=[_conflict_entry(a, names) for a in overlapping],
            )
            for index, draft, overlapping in flagged
        ]

    async def _commit(self, operation: SchedulingOperation) -> SchedulingOperation:
        try:
            if operation.kind == OperationKind.SINGLE:
                operation.appointments = [await self.store.insert_appointment(operation.drafts[0])]
            elif operation.kind == OperationKind.RECURRING:
                operation.appointments = await self.store.insert_many(operation.drafts)
            else:
                moved = operation.drafts[0]
                updated = await self.store.update_appointment_time(
                    operation.clinic_id, moved.id, moved.start_time, moved.end_time
                )
                if updated is None:
                    raise NotFoundException("Appointment not found")
                operation.appointments = [updated]
        except (PersistenceException, NotFoundException):
            operation.transition(SchedulingState.FAILED)
            logger.warning(
                "scheduling_commit_failed",
                clinic_id=str(operation.clinic_id),
                kind=operation.kind.value,
                records=len(operation.drafts),
            )
            raise

        operation.transition(SchedulingState.DONE)
        logger.info(
            "appointments_committed",
            clinic_id=str(operation.clinic_id),
            kind=operation.kind.value,
            records=len(operation.appointments),
            conflicts_acknowledged=len(operation.conflicts),
        )
        return operation

    async def _describe(
        self,
        clinic_id: UUID,
        conflicts: list[Appointment],
    ) -> list[ConflictingAppointment]:
        if not conflicts:
            return []
        names = await self.patients.get_display_names(clinic_id, {a.patient_id for a in conflicts})
        return [_conflict_entry(a, names) for a in conflicts]

    @staticmethod
    def _require_clinic(identity: SchedulingIdentity | None) -> UUID:
        if identity is None or identity.clinic_id is None:
            raise UnauthorizedException("Not authenticated")
        return identity.clinic_id

    async def _require_patient(self, clinic_id: UUID, patient_id: UUID) -> None:
        if not await self.patients.patient_exists(clinic_id, patient_id):
            raise NotFoundException("Patient not found")

    async def _require_appointment(self, clinic_id: UUID, appointment_id: UUID) -> Appointment:
        appointment = await self.store.get_appointment(clinic_id, appointment_id)
        if appointment is None:
            raise NotFoundException("Appointment not found")
        return appointment


def _require_interval(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise ValidationException("End time must be after start time")


def _draft(
    clinic_id: UUID,
    data: AppointmentCreate,
    start_time: datetime,
    end_time: datetime,
    recurrence: Standalone | RecurrenceParent | RecurrenceChild,
) -> Appointment:
    return Appointment(
        id=uuid4(),
        clinic_id=clinic_id,
        patient_id=data.patient_id,
        title=data.title,
        description=data.description,
        start_time=start_time,
        end_time=end_time,
        status=data.status,
        recurrence=recurrence,
    )


def _conflict_entry(appointment: Appointment, names: dict[UUID, str]) -> ConflictingAppointment:
    return ConflictingAppointment(
        id=appointment.id,
        title=appointment.title,
        patient_id=appointment.patient_id,
        patient_name=names.get(appointment.patient_id),
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        status=appointment.status,
    )
