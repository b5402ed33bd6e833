"""SQLModel table definitions for database persistence.

Domain models (TableDefinition, Record) are frozen pydantic models with strict
validation; these row classes are the mutable ORM side used by the
DocumentStore. Field names match the domain models so conversion is a plain
model_dump()/model_validate() round trip.

The schema of a tenant table (its field and relation lists) is stored as JSON
inside its own row, and every record's payload is a JSON document. Nothing
about a tenant table ever becomes a physical column.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Field, SQLModel


class TableDefinitionRow(SQLModel, table=True):
    """One tenant-scoped table definition, schema included."""

    __tablename__ = "table_definitions"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_table_definitions_tenant_name"),)

    id: str = Field(primary_key=True)
    schema_version: str
    tenant_id: str = Field(index=True)
    name: str
    display_name: str
    description: str | None = None
    fields: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    relations: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    version: int = 0
    created_at: datetime = Field(index=True)
    updated_at: datetime


class RecordRow(SQLModel, table=True):
    """One stored record document belonging to a table definition."""

    __tablename__ = "records"

    id: str = Field(primary_key=True)
    schema_version: str
    table_id: str = Field(index=True, foreign_key="table_definitions.id")
    data: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(index=True)
    updated_at: datetime
    deleted_at: datetime | None = Field(default=None, index=True)
