"""Patient model definition using SQLAlchemy Core.

Only the columns the scheduling core reads are mapped here: the patient
record itself is maintained elsewhere.
"""

from sqlalchemy import Column, DateTime, MetaData, Table, Text, text
from sqlalchemy.dialects.postgresql import UUID

# Metadata shared by all scheduling tables
metadata = MetaData()

patients = Table(
    "patients",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("clinic_id", UUID(as_uuid=True), nullable=False, index=True),
    Column("full_name", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
)
