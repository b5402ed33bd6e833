"""Tenant table definitions: creation, field and relation editing.

A table's fields and relations live inside its own definition document. Every
edit loads that document, changes it, bumps its version and writes it back
whole, holding the table's lock so concurrent edits in this process cannot
overwrite each other.
"""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError

from recordbase.errors import NotFoundError, ValidationError, parse_model
from recordbase.models.base import is_snake_case, utc_now
from recordbase.models.table import (
    FieldDefinition,
    FieldSpec,
    FieldUpdate,
    RelationDefinition,
    RelationSpec,
    TableDefinition,
    TableSummary,
)
from recordbase.services.document_store import DocumentStore, persistence_guard
from recordbase.services.locks import TableLocks

_SNAKE_CASE_HINT = "lowercase letters, numbers, and underscores only, starting with a letter"


class TableDefinitionStore:
    """Creates tenant tables and edits their field and relation lists."""

    def __init__(
        self,
        store: DocumentStore,
        locks: TableLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._locks = locks if locks is not None else TableLocks()
        self._clock = clock
        self._logger = logger or structlog.get_logger(__name__)

    async def create_table(
        self,
        tenant_id: str,
        name: str,
        display_name: str,
        description: str | None = None,
    ) -> TableDefinition:
        """Create an empty table for a tenant.

        Raises:
            ValidationError: If the name is not snake_case or is already used by the tenant.
        """
        _check_name(name, "Table")
        if await self._store.get_table_by_name(tenant_id, name) is not None:
            raise ValidationError(
                f'Table with name "{name}" already exists',
                field="name",
                value=name,
                constraint="unique",
            )

        now = self._clock()
        table = parse_model(
            TableDefinition,
            {
                "id": str(uuid4()),
                "tenant_id": tenant_id,
                "name": name,
                "display_name": display_name,
                "description": description,
                "fields": [],
                "relations": [],
                "created_at": now,
                "updated_at": now,
            },
        )
        try:
            with persistence_guard(self._logger, "table_create_failed", tenant_id=tenant_id, name=name):
                await self._store.create_table(table)
        except SQLAlchemyIntegrityError as e:
            # Lost a race with a concurrent create of the same name.
            raise ValidationError(
                f'Table with name "{name}" already exists',
                field="name",
                value=name,
                constraint="unique",
            ) from e

        self._logger.info("table_created", table_id=table.id, tenant_id=tenant_id, name=name)
        return table

    async def get_table(self, table_id: str, tenant_id: str | None = None) -> TableDefinition:
        """Load a table, optionally asserting it belongs to tenant_id.

        Raises:
            NotFoundError: If the table is missing or owned by another tenant.
        """
        table = await self._store.get_table(table_id)
        if table is None or (tenant_id is not None and table.tenant_id != tenant_id):
            raise NotFoundError("Table")
        return table

    async def list_tables(self, tenant_id: str) -> list[TableSummary]:
        """Tenant tables, newest first, each with its count of live records."""
        tables = await self._store.list_tables(tenant_id)
        counts = await self._store.count_live_records(t.id for t in tables)
        return [TableSummary(table=t, record_count=counts.get(t.id, 0)) for t in tables]

    async def update_table(
        self,
        table_id: str,
        display_name: str | None = None,
        description: str | None = None,
    ) -> TableDefinition:
        """Change a table's display name and/or description. The name is immutable."""
        changes: dict[str, Any] = {}
        if display_name is not None:
            changes["display_name"] = display_name
        if description is not None:
            changes["description"] = description

        async with self._locks.hold(table_id):
            table = await self.get_table(table_id)
            if not changes:
                return table
            updated = await self._write(table, **changes)

        self._logger.info("table_updated", table_id=table_id, changed=sorted(changes))
        return updated

    async def add_field(self, table_id: str, field_spec: FieldSpec | Mapping[str, Any]) -> TableDefinition:
        """Append a new field to a table's schema.

        Raises:
            NotFoundError: If the table does not exist.
            ValidationError: If the name is not snake_case, already exists, or the field spec is malformed.
        """
        name = field_spec.name if isinstance(field_spec, FieldSpec) else field_spec.get("name")
        async with self._locks.hold(table_id):
            table = await self.get_table(table_id)
            _check_name(name, "Field")
            if table.field_by_name(name) is not None:
                raise ValidationError(
                    f'Field with name "{name}" already exists',
                    field="name",
                    value=name,
                    constraint="unique",
                )

            spec = parse_model(FieldSpec, field_spec)
            field = parse_model(FieldDefinition, {"id": str(uuid4()), **spec.model_dump()})
            updated = await self._write(table, fields=[*table.fields, field])

        self._logger.info(
            "field_added",
            table_id=table_id,
            field_id=field.id,
            name=field.name,
            type=field.type.value,
        )
        return updated

    async def update_field(
        self,
        table_id: str,
        field_id: str,
        partial: FieldUpdate | Mapping[str, Any],
    ) -> TableDefinition:
        """Merge changes onto a field. Stored record values are not revisited.

        Raises:
            NotFoundError: If the table or field does not exist.
            ValidationError: If the changes are malformed or try to alter id/name.
        """
        async with self._locks.hold(table_id):
            table = await self.get_table(table_id)
            existing = table.field_by_id(field_id)
            if existing is None:
                raise NotFoundError("Field")

            changes = parse_model(FieldUpdate, partial).changes()
            merged = parse_model(FieldDefinition, {**existing.model_dump(), **changes})
            fields = [merged if f.id == field_id else f for f in table.fields]
            updated = await self._write(table, fields=fields)

        if "type" in changes and changes["type"] != existing.type:
            self._logger.warning(
                "field_type_changed",
                table_id=table_id,
                field_id=field_id,
                old_type=existing.type.value,
                new_type=merged.type.value,
            )
        self._logger.info("field_updated", table_id=table_id, field_id=field_id, changed=sorted(changes))
        return updated

    async def delete_field(self, table_id: str, field_id: str) -> TableDefinition:
        """Remove a field from the schema. Its values stay in stored records."""
        async with self._locks.hold(table_id):
            table = await self.get_table(table_id)
            if table.field_by_id(field_id) is None:
                raise NotFoundError("Field")
            fields = [f for f in table.fields if f.id != field_id]
            updated = await self._write(table, fields=fields)

        self._logger.info("field_deleted", table_id=table_id, field_id=field_id)
        return updated

    async def create_relation(
        self,
        table_id: str,
        relation_spec: RelationSpec | Mapping[str, Any],
    ) -> TableDefinition:
        """Link a field of this table to a field of another (or the same) table.

        Field existence is checked only here; later field deletions leave the
        relation in place.

        Raises:
            NotFoundError: If this table or the target table does not exist.
            ValidationError: If from_field/to_field are not in the current schemas.
        """
        spec = parse_model(RelationSpec, relation_spec)
        async with self._locks.hold(table_id):
            table = await self.get_table(table_id)
            if spec.to_table == table.id:
                target = table
            else:
                target = await self._store.get_table(spec.to_table)
                if target is None or target.tenant_id != table.tenant_id:
                    raise NotFoundError("Target table")

            if table.field_by_name(spec.from_field) is None:
                raise ValidationError(
                    f'Field "{spec.from_field}" not found in source table',
                    field="from_field",
                    value=spec.from_field,
                    constraint="exists",
                )
            if target.field_by_name(spec.to_field) is None:
                raise ValidationError(
                    f'Field "{spec.to_field}" not found in target table',
                    field="to_field",
                    value=spec.to_field,
                    constraint="exists",
                )

            relation = RelationDefinition(
                id=str(uuid4()),
                type=spec.type,
                from_table=table.id,
                to_table=target.id,
                from_field=spec.from_field,
                to_field=spec.to_field,
            )
            updated = await self._write(table, relations=[*table.relations, relation])

        self._logger.info(
            "relation_created",
            table_id=table_id,
            relation_id=relation.id,
            to_table=target.id,
            type=relation.type.value,
        )
        return updated

    async def find_dangling_relations(self, table_id: str) -> list[RelationDefinition]:
        """Relations whose from_field or to_field no longer exists. Reports only."""
        table = await self.get_table(table_id)
        dangling: list[RelationDefinition] = []
        targets: dict[str, TableDefinition | None] = {table.id: table}
        for relation in table.relations:
            if relation.to_table not in targets:
                targets[relation.to_table] = await self._store.get_table(relation.to_table)
            target = targets[relation.to_table]
            if table.field_by_name(relation.from_field) is None:
                dangling.append(relation)
            elif target is None or target.field_by_name(relation.to_field) is None:
                dangling.append(relation)
        return dangling

    async def _write(self, table: TableDefinition, **changes: Any) -> TableDefinition:
        """Rewrite the whole definition document with the given changes applied."""
        updated = parse_model(
            TableDefinition,
            {
                **table.model_dump(),
                **changes,
                "version": table.version + 1,
                "updated_at": self._clock(),
            },
        )
        with persistence_guard(self._logger, "table_write_failed", table_id=table.id):
            await self._store.save_table(updated)
        return updated


def _check_name(name: Any, kind: str) -> None:
    if not is_snake_case(name):
        raise ValidationError(
            f"{kind} name must be in snake_case ({_SNAKE_CASE_HINT})",
            field="name",
            value=name,
            constraint="pattern",
        )
