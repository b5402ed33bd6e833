"""Type and constraint checks for record payloads against a table's fields.

Accepted values are normalized to one representation per field type, so stored
documents only ever hold: text as str, number as int or float, boolean as bool,
date as an ISO-8601 str. Keys that are not in the schema pass through as-is.
"""

import math
import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

import structlog

from recordbase.errors import ValidationError
from recordbase.models.enums import FieldType
from recordbase.models.record import Record
from recordbase.models.table import FieldDefinition

_NUMBER_TEXT = re.compile(r"^\d+(\.\d+)?$")
_BOOLEAN_TEXT = {"true": True, "false": False}


def is_blank(value: Any) -> bool:
    return value is None or value == ""


def values_equal(left: Any, right: Any) -> bool:
    """Exact equality that, unlike ==, never treats a bool as equal to a number."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


class FieldValidator:
    """Validates and normalizes payloads against a list of field definitions."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def validate(self, fields: Iterable[FieldDefinition], payload: Mapping[str, Any]) -> dict[str, Any]:
        """Check every field and return the normalized payload.

        Args:
            fields: The table's current field definitions.
            payload: Candidate record data keyed by field name.

        Returns:
            A new dict with normalized values; absent optional fields stay absent.

        Raises:
            ValidationError: On the first field that violates its definition.
        """
        accepted = dict(payload)
        for field in fields:
            value = payload.get(field.name)
            if field.required and is_blank(value):
                raise ValidationError(
                    f'Field "{field.display_name}" is required',
                    field=field.name,
                    value=value,
                    constraint="required",
                )
            if value is None:
                continue
            accepted[field.name] = self.check_value(field, value)
        return accepted

    def check_value(self, field: FieldDefinition, value: Any) -> Any:
        """Validate one non-null value and return its normalized form."""
        if field.type == FieldType.NUMBER:
            return self._check_number(field, value)
        if field.type == FieldType.BOOLEAN:
            return self._check_boolean(field, value)
        if field.type == FieldType.DATE:
            return self._check_date(field, value)
        if field.type == FieldType.TEXT:
            return self._check_text(field, value)
        # relation and computed values are not checked here
        return value

    def find_duplicate(self, field: FieldDefinition, value: Any, records: Iterable[Record]) -> Record | None:
        """First record whose stored value for field equals value exactly."""
        for record in records:
            if field.name in record.data and values_equal(record.data[field.name], value):
                return record
        return None

    def ensure_unique(self, field: FieldDefinition, value: Any, records: Iterable[Record]) -> None:
        """Raise ValidationError when another record already holds value."""
        duplicate = self.find_duplicate(field, value, records)
        if duplicate is not None:
            self._logger.debug(
                "unique_violation",
                field=field.name,
                conflicting_record_id=duplicate.id,
            )
            raise ValidationError(
                f'Value "{value}" for field "{field.display_name}" already exists',
                field=field.name,
                value=value,
                constraint="unique",
            )

    def _check_number(self, field: FieldDefinition, value: Any) -> int | float:
        if isinstance(value, bool):
            number = None
        elif isinstance(value, (int, float)):
            number = value if not (isinstance(value, float) and math.isnan(value)) else None
        elif isinstance(value, str) and _NUMBER_TEXT.match(value):
            number = float(value) if "." in value else int(value)
        else:
            number = None

        if number is None:
            raise ValidationError(
                f'Field "{field.display_name}" must be a number',
                field=field.name,
                value=value,
                constraint="type",
            )

        rules = field.validation
        if rules is not None and rules.min is not None and number < rules.min:
            raise ValidationError(
                f'Field "{field.display_name}" must be at least {_fmt(rules.min)}',
                field=field.name,
                value=value,
                constraint="min",
                min=rules.min,
            )
        if rules is not None and rules.max is not None and number > rules.max:
            raise ValidationError(
                f'Field "{field.display_name}" must be at most {_fmt(rules.max)}',
                field=field.name,
                value=value,
                constraint="max",
                max=rules.max,
            )
        return number

    def _check_boolean(self, field: FieldDefinition, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value in _BOOLEAN_TEXT:
            return _BOOLEAN_TEXT[value]
        raise ValidationError(
            f'Field "{field.display_name}" must be a boolean',
            field=field.name,
            value=value,
            constraint="type",
        )

    def _check_date(self, field: FieldDefinition, value: Any) -> str:
        """date/datetime objects, or strings in an ISO-8601 form fromisoformat reads."""
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, str):
            try:
                datetime.fromisoformat(value.strip())
            except ValueError:
                pass
            else:
                return value.strip()
        raise ValidationError(
            f'Field "{field.display_name}" must be a valid date',
            field=field.name,
            value=value,
            constraint="type",
        )

    def _check_text(self, field: FieldDefinition, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(
                f'Field "{field.display_name}" must be a string',
                field=field.name,
                value=value,
                constraint="type",
            )

        rules = field.validation
        if rules is None:
            return value
        if rules.pattern and re.search(rules.pattern, value) is None:
            raise ValidationError(
                f'Field "{field.display_name}" does not match required pattern',
                field=field.name,
                value=value,
                constraint="pattern",
                pattern=rules.pattern,
            )
        if rules.min is not None and len(value) < rules.min:
            raise ValidationError(
                f'Field "{field.display_name}" must be at least {_fmt(rules.min)} characters',
                field=field.name,
                value=value,
                constraint="min",
                min=rules.min,
            )
        if rules.max is not None and len(value) > rules.max:
            raise ValidationError(
                f'Field "{field.display_name}" must be at most {_fmt(rules.max)} characters',
                field=field.name,
                value=value,
                constraint="max",
                max=rules.max,
            )
        return value


def _fmt(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)
