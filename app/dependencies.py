"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import clinic_id_from_token
from app.database import get_db
from app.schemas.appointments import SchedulingIdentity
from app.services.appointment_repository import AppointmentRepository
from app.services.appointment_scheduler import (
    AppointmentScheduler,
    AppointmentStore,
    PatientDirectory,
)
from app.services.patient_service import PatientLookup

# Missing credentials are not rejected here: the scheduler refuses to act
# without a clinic, so every operation enforces it in one place.
security = HTTPBearer(auto_error=False)


async def get_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> SchedulingIdentity:
    """
    Resolve the clinic identity carried by the bearer token.

    Args:
        credentials: Bearer token credentials, if any

    Returns:
        Identity whose clinic id is None for absent or invalid tokens
    """
    if credentials is None:
        return SchedulingIdentity()
    return SchedulingIdentity(clinic_id=clinic_id_from_token(credentials.credentials))


def get_appointment_store(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AppointmentStore:
    """Storage collaborator bound to the request session."""
    return AppointmentRepository(db)


def get_patient_directory(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PatientDirectory:
    """Patient lookup with display-name caching."""
    return PatientLookup(db, cache_manager=CacheManager(get_redis_client()))


def get_scheduler(
    store: Annotated[AppointmentStore, Depends(get_appointment_store)],
    patients: Annotated[PatientDirectory, Depends(get_patient_directory)],
) -> AppointmentScheduler:
    """Scheduler wired with the request's collaborators and settings."""
    return AppointmentScheduler(
        store,
        patients,
        default_occurrence_count=settings.recurrence_default_count,
        max_occurrence_count=settings.recurrence_max_occurrences,
        recheck_on_confirm=settings.recheck_conflicts_on_confirm,
    )


# Type aliases for dependency injection
Identity = Annotated[SchedulingIdentity, Depends(get_identity)]
Scheduler = Annotated[AppointmentScheduler, Depends(get_scheduler)]
