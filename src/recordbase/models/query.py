from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from recordbase.models.base import ensure_non_empty_text
from recordbase.models.enums import SortOrder

# Sort fields that map onto stored timestamp columns, with camelCase aliases.
TIMESTAMP_SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
}


class SortSpec(BaseModel):
    field: str
    order: SortOrder = SortOrder.ASC

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @field_validator("field")
    @classmethod
    def _validate_field(cls, value: str) -> str:
        return ensure_non_empty_text(value, "sort field")

    @property
    def timestamp_column(self) -> str | None:
        """The stored timestamp column this sort targets, or None for a data field."""
        return TIMESTAMP_SORT_FIELDS.get(self.field)

    @property
    def descending(self) -> bool:
        return self.order == SortOrder.DESC


class RecordQuery(BaseModel):
    filters: dict[str, Any] | None = None
    sort: SortSpec | None = None
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @field_validator("filters", mode="before")
    @classmethod
    def _normalize_filters(cls, value: Any) -> dict[str, Any] | None:
        if value is None:
            return None
        if isinstance(value, dict):
            return value
        raise TypeError("filters must be a dictionary")

    def has_filters(self) -> bool:
        return bool(self.filters)


class QueryPage(BaseModel):
    """One page of flattened records plus paging totals."""

    records: list[dict[str, Any]]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    total_pages: int = Field(ge=0)

    model_config = {"frozen": True}


__all__ = ["QueryPage", "RecordQuery", "SortSpec"]
