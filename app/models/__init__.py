"""Database models."""

from app.models.appointments import appointments
from app.models.patients import metadata, patients

__all__ = [
    "appointments",
    "metadata",
    "patients",
]
