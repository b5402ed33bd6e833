"""Error hierarchy shared by the schema, record, query and transfer services.

ValidationError is always user-actionable and never retried. NotFoundError
carries only the resource kind. Anything else that escapes a service is a
persistence or programming failure and is re-raised unchanged.
"""

from typing import Any, Mapping, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

T_Model = TypeVar("T_Model", bound=BaseModel)


class RecordbaseError(Exception):
    """Base exception for all recordbase errors."""

    code: str = "RECORDBASE_ERROR"
    http_status: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured form suitable for an API error envelope."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(RecordbaseError):
    """A payload or schema request violates a constraint."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **details: Any,
    ) -> None:
        payload: dict[str, Any] = dict(details)
        if field is not None:
            payload["field"] = field
            payload["value"] = value
        if constraint is not None:
            payload["constraint"] = constraint
        super().__init__(message, payload)
        self.field = field
        self.value = value
        self.constraint = constraint


class NotFoundError(RecordbaseError):
    """A table, field, relation or record does not exist (or is soft-deleted)."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found", {"resource": resource})
        self.resource = resource


class IntegrityError(RecordbaseError):
    """A record was addressed through a table it does not belong to."""

    code = "INTEGRITY_ERROR"
    http_status = 409


def parse_model(model: Type[T_Model], data: Mapping[str, Any] | T_Model) -> T_Model:
    """Validate caller input into a pydantic model, raising our ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(
            first.get("msg", "invalid input"),
            field=location,
            value=first.get("input"),
            constraint=first.get("type"),
        ) from e
