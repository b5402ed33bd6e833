from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, ValidationInfo, field_validator

from recordbase.models.base import RecordModel, coerce_datetime, ensure_uuid_str

# Keys that Record.to_row() reserves alongside the record's data.
ROW_ID = "id"
ROW_CREATED_AT = "created_at"
ROW_UPDATED_AT = "updated_at"
RESERVED_ROW_KEYS = frozenset({ROW_ID, ROW_CREATED_AT, ROW_UPDATED_AT})


class Record(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "record.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    id: str
    table_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @field_validator("id", "table_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("data", mode="before")
    @classmethod
    def _normalize_data(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        raise TypeError("data must be a dictionary")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any, info: ValidationInfo) -> datetime:
        return coerce_datetime(value, info.field_name or "timestamp")

    @field_validator("deleted_at", mode="before")
    @classmethod
    def _validate_deleted_at(cls, value: Any) -> datetime | None:
        if value is None:
            return None
        return coerce_datetime(value, "deleted_at")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_row(self) -> dict[str, Any]:
        """Flatten to the caller-facing shape: id, every data key, then timestamps.

        Data keys named like a reserved key are dropped; the record's own id and
        timestamps always win.
        """
        return {
            ROW_ID: self.id,
            **{k: v for k, v in self.data.items() if k not in RESERVED_ROW_KEYS},
            ROW_CREATED_AT: self.created_at,
            ROW_UPDATED_AT: self.updated_at,
        }


__all__ = ["RESERVED_ROW_KEYS", "Record"]
