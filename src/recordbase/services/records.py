"""Record writes: insert, merge-update and soft delete against the live schema."""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog

from recordbase.errors import IntegrityError, NotFoundError
from recordbase.models.base import utc_now
from recordbase.models.enums import FieldType
from recordbase.models.record import Record
from recordbase.models.table import TableDefinition
from recordbase.services.document_store import DocumentStore, persistence_guard
from recordbase.services.formula import ComputedFieldEvaluator
from recordbase.services.locks import TableLocks
from recordbase.services.validator import FieldValidator


class RecordRepository:
    """Validates, derives and persists records for tenant tables.

    Every write loads the table's current definition first. The
    validate -> compute -> unique scan -> persist sequence runs under the
    table's lock, so two writers in this process cannot both pass the
    unique scan with the same value.
    """

    def __init__(
        self,
        store: DocumentStore,
        validator: FieldValidator | None = None,
        evaluator: ComputedFieldEvaluator | None = None,
        locks: TableLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._logger = logger or structlog.get_logger(__name__)
        self._store = store
        self._validator = validator or FieldValidator(logger=self._logger)
        self._evaluator = evaluator or ComputedFieldEvaluator(logger=self._logger)
        self._locks = locks if locks is not None else TableLocks()
        self._clock = clock

    async def insert(
        self,
        table_id: str,
        payload: Mapping[str, Any],
        actor_id: str | None = None,
    ) -> Record:
        """Validate and store a new record.

        Args:
            table_id: Table the record belongs to.
            payload: Field values keyed by field name.
            actor_id: Who is writing, stored as created_by and updated_by.

        Returns:
            The persisted Record.

        Raises:
            NotFoundError: If the table does not exist.
            ValidationError: If the payload violates the schema or a unique field.
        """
        async with self._locks.hold(table_id):
            table = await self._load_table(table_id)
            data = self._validator.validate(table.fields, payload)
            for field in table.fields:
                if field.type != FieldType.COMPUTED and field.has_default and field.name not in data:
                    data[field.name] = field.default_value
            data = self._evaluator.apply(table.fields, data)
            await self._check_unique(table, data)

            now = self._clock()
            record = Record(
                id=str(uuid4()),
                table_id=table.id,
                data=data,
                created_by=actor_id,
                updated_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            with persistence_guard(self._logger, "record_insert_failed", table_id=table_id):
                await self._store.save_record(record)

        self._logger.info("record_inserted", table_id=table_id, record_id=record.id, actor_id=actor_id)
        return record

    async def update(
        self,
        table_id: str,
        record_id: str,
        payload: Mapping[str, Any],
        actor_id: str | None = None,
    ) -> Record:
        """Overlay payload onto a record's data and revalidate the whole result.

        Fields the payload does not mention are validated again too, so a
        record stored under an older schema can fail on an untouched field.

        Raises:
            NotFoundError: If the table or record is missing, or the record is soft-deleted.
            IntegrityError: If the record belongs to another table.
            ValidationError: If the merged document violates the schema or a unique field.
        """
        async with self._locks.hold(table_id):
            table = await self._load_table(table_id)
            existing = await self._load_live_record(table_id, record_id)

            merged = {**existing.data, **payload}
            data = self._validator.validate(table.fields, merged)
            data = self._evaluator.apply(table.fields, data)
            await self._check_unique(table, data, exclude_id=record_id)

            record = existing.model_copy(
                update={
                    "data": data,
                    "updated_by": actor_id,
                    "updated_at": self._clock(),
                }
            )
            with persistence_guard(self._logger, "record_update_failed", table_id=table_id, record_id=record_id):
                await self._store.save_record(record)

        self._logger.info(
            "record_updated",
            table_id=table_id,
            record_id=record_id,
            actor_id=actor_id,
            changed=sorted(payload),
        )
        return record

    async def soft_delete(self, table_id: str, record_id: str) -> Record:
        """Tombstone a record. It stays stored but disappears from reads and unique scans.

        Raises:
            NotFoundError: If the record is missing or already deleted.
            IntegrityError: If the record belongs to another table.
        """
        async with self._locks.hold(table_id):
            existing = await self._load_live_record(table_id, record_id)
            record = existing.model_copy(update={"deleted_at": self._clock()})
            with persistence_guard(self._logger, "record_delete_failed", table_id=table_id, record_id=record_id):
                await self._store.save_record(record)

        self._logger.info("record_soft_deleted", table_id=table_id, record_id=record_id)
        return record

    async def get(self, table_id: str, record_id: str) -> Record:
        """Fetch a live record of the table."""
        return await self._load_live_record(table_id, record_id)

    async def _load_table(self, table_id: str) -> TableDefinition:
        table = await self._store.get_table(table_id)
        if table is None:
            raise NotFoundError("Table")
        return table

    async def _load_live_record(self, table_id: str, record_id: str) -> Record:
        record = await self._store.get_record(record_id)
        if record is None or record.is_deleted:
            raise NotFoundError("Record")
        if record.table_id != table_id:
            raise IntegrityError(
                "Record does not belong to this table",
                {"record_id": record_id, "table_id": table_id},
            )
        return record

    async def _check_unique(
        self,
        table: TableDefinition,
        data: Mapping[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        """Full scan of the table's live records for each unique field with a value."""
        unique_fields = [f for f in table.fields if f.unique and data.get(f.name) is not None]
        if not unique_fields:
            return
        others = await self._store.list_records(table.id, exclude_id=exclude_id)
        for field in unique_fields:
            self._validator.ensure_unique(field, data[field.name], others)
