from recordbase.models.enums import FieldType, RelationType, SortOrder
from recordbase.models.query import QueryPage, RecordQuery, SortSpec
from recordbase.models.record import Record
from recordbase.models.table import (
    FieldDefinition,
    FieldSpec,
    FieldUpdate,
    FieldValidation,
    RelationDefinition,
    RelationSpec,
    TableDefinition,
    TableSummary,
)

__all__ = [
    "FieldDefinition",
    "FieldSpec",
    "FieldType",
    "FieldUpdate",
    "FieldValidation",
    "QueryPage",
    "Record",
    "RecordQuery",
    "RelationDefinition",
    "RelationSpec",
    "RelationType",
    "SortOrder",
    "SortSpec",
    "TableDefinition",
    "TableSummary",
]
