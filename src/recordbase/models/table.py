import re
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from recordbase.models.base import (
    RecordModel,
    coerce_datetime,
    ensure_non_empty_text,
    ensure_snake_case,
    ensure_uuid_str,
)
from recordbase.models.enums import FieldType, RelationType

_FROZEN = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class FieldValidation(BaseModel):
    """Optional constraints: numeric bounds for numbers, length bounds and a regex for text."""

    min: float | None = None
    max: float | None = None
    pattern: str | None = None

    model_config = _FROZEN

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid pattern: {e}") from e
        return value


def _require_formula(field_type: FieldType | None, formula: str | None) -> None:
    if field_type == FieldType.COMPUTED and not (formula and formula.strip()):
        raise ValueError("computed fields require a formula")


class FieldSpec(BaseModel):
    """Request to add a field; the store assigns the id."""

    name: str
    display_name: str
    type: FieldType
    required: bool = False
    unique: bool | None = None
    default_value: Any = None
    validation: FieldValidation | None = None
    formula: str | None = None

    model_config = _FROZEN

    @field_validator("display_name")
    @classmethod
    def _ensure_display_name(cls, value: str) -> str:
        return ensure_non_empty_text(value, "display_name")

    @model_validator(mode="after")
    def _validate_formula(self) -> "FieldSpec":
        _require_formula(self.type, self.formula)
        return self


class FieldUpdate(BaseModel):
    """Partial update of a field. id and name are not updatable."""

    display_name: str | None = None
    type: FieldType | None = None
    required: bool | None = None
    unique: bool | None = None
    default_value: Any = None
    validation: FieldValidation | None = None
    formula: str | None = None

    model_config = _FROZEN

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class FieldDefinition(BaseModel):
    id: str
    name: str
    display_name: str
    type: FieldType
    required: bool = False
    unique: bool | None = None
    default_value: Any = None
    validation: FieldValidation | None = None
    formula: str | None = None

    model_config = _FROZEN

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return ensure_snake_case(value, "field name")

    @field_validator("display_name")
    @classmethod
    def _ensure_display_name(cls, value: str) -> str:
        return ensure_non_empty_text(value, "display_name")

    @model_validator(mode="after")
    def _validate_formula(self) -> "FieldDefinition":
        _require_formula(self.type, self.formula)
        return self

    @property
    def has_default(self) -> bool:
        return self.default_value is not None


class RelationSpec(BaseModel):
    """Request to link a field of one table to a field of another."""

    type: RelationType
    to_table: str
    from_field: str
    to_field: str
    from_table: str | None = None

    model_config = _FROZEN

    @field_validator("to_table", "from_table", mode="before")
    @classmethod
    def _normalize_table_ids(cls, value: Any) -> str | None:
        if value is None:
            return None
        return ensure_uuid_str(value)

    @field_validator("from_field", "to_field")
    @classmethod
    def _ensure_field_names(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "field")


class RelationDefinition(BaseModel):
    id: str
    type: RelationType
    from_table: str
    to_table: str
    from_field: str
    to_field: str

    model_config = _FROZEN

    @field_validator("id", "from_table", "to_table", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)


class TableDefinition(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "table_definition.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    id: str
    tenant_id: str
    name: str
    display_name: str
    description: str | None = None
    fields: list[FieldDefinition] = Field(default_factory=list)
    relations: list[RelationDefinition] = Field(default_factory=list)
    version: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("tenant_id", "display_name")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return ensure_snake_case(value, "table name")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any, info: ValidationInfo) -> datetime:
        return coerce_datetime(value, info.field_name or "timestamp")

    def field_by_id(self, field_id: str) -> FieldDefinition | None:
        return next((f for f in self.fields if f.id == field_id), None)

    def field_by_name(self, name: str) -> FieldDefinition | None:
        return next((f for f in self.fields if f.name == name), None)

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


class TableSummary(BaseModel):
    """A table definition together with its count of live records."""

    table: TableDefinition
    record_count: int = Field(ge=0)

    model_config = {"frozen": True}


__all__ = [
    "FieldDefinition",
    "FieldSpec",
    "FieldUpdate",
    "FieldValidation",
    "RelationDefinition",
    "RelationSpec",
    "TableDefinition",
    "TableSummary",
]
