import re
from datetime import datetime, timezone
from typing import Any, ClassVar, Mapping, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

T_Model = TypeVar("T_Model", bound="RecordModel")

SNAKE_CASE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


class SchemaVersioned(BaseModel):
    """Base class enforcing schema_version defaults and immutability."""

    SCHEMA_VERSION: ClassVar[str]
    schema_version: str

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _apply_default_schema_version(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            if "schema_version" not in data:
                data = dict(data)
                data["schema_version"] = cls.SCHEMA_VERSION
        return data

    @model_validator(mode="after")
    def _validate_schema_version(self) -> "SchemaVersioned":
        if self.schema_version != self.SCHEMA_VERSION:
            raise ValueError(f"expected schema_version '{self.SCHEMA_VERSION}'")
        return self


class RecordModel(SchemaVersioned):
    """Adds serialization helpers for storage adapters."""

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_record(cls: Type[T_Model], data: Mapping[str, Any] | BaseModel) -> T_Model:
        return cls.model_validate(data)


def is_snake_case(value: Any) -> bool:
    return isinstance(value, str) and SNAKE_CASE_PATTERN.match(value) is not None


def ensure_snake_case(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not is_snake_case(value):
        raise ValueError(f"{field_name} must be in snake_case")
    return value


def ensure_uuid_str(value: Any) -> str:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return str(UUID(value))
    raise TypeError("expected UUID or string for identifier field")


def ensure_timezone_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError("datetime must be timezone-aware")
    return dt


def coerce_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"{field_name} must be a datetime")
    return ensure_timezone_aware(value)


def ensure_non_empty_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
