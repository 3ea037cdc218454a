"""Patient lookup used for scheduling checks and conflict presentation."""

from collections.abc import Iterable
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import PersistenceException
from app.core.redis_client import CacheManager
from app.models.patients import patients

logger = structlog.get_logger()


class PatientLookup:
    """Resolves patient ids of one clinic to existence and display names."""

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        cache_ttl: int | None = None,
    ):
        """Initialize lookup with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.patient_name_cache_ttl

    @staticmethod
    def _get_name_cache_key(clinic_id: UUID, patient_id: UUID) -> str:
        """Generate cache key for a patient display name."""
        return f"clinic:{clinic_id}:patient:{patient_id}:name"

    async def patient_exists(self, clinic_id: UUID, patient_id: UUID) -> bool:
        """Whether the patient belongs to the clinic."""
        names = await self.get_display_names(clinic_id, [patient_id])
        return patient_id in names

    async def get_display_names(
        self,
        clinic_id: UUID,
        patient_ids: Iterable[UUID],
    ) -> dict[UUID, str]:
        """
        Resolve display names, serving from cache where possible.

        Args:
            clinic_id: Owning clinic
            patient_ids: Patients to resolve

        Returns:
            Mapping of found patient ids to names; unknown ids are absent
        """
        wanted = set(patient_ids)
        names: dict[UUID, str] = {}

        if self.cache:
            for patient_id in wanted:
                cached = self.cache.get_json(self._get_name_cache_key(clinic_id, patient_id))
                if cached:
                    names[patient_id] = cached

        missing = wanted - names.keys()
        if not missing:
            return names

        stmt = select(patients.c.id, patients.c.full_name).where(
            and_(
                patients.c.clinic_id == clinic_id,
                patients.c.id.in_(missing),
            )
        )

        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("patient_lookup_failed", clinic_id=str(clinic_id), error=str(e))
            raise PersistenceException("Failed to look up patients") from e

        for row in result.fetchall():
            names[row.id] = row.full_name
            if self.cache:
                self.cache.set_json(
                    self._get_name_cache_key(clinic_id, row.id),
                    row.full_name,
                    ttl=self.cache_ttl,
                )

        return names
