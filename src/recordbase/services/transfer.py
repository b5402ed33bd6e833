"""Bulk import and export of a table's records as tabular rows and CSV text."""

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from recordbase.errors import NotFoundError, RecordbaseError
from recordbase.models.record import RESERVED_ROW_KEYS, ROW_CREATED_AT, ROW_ID, ROW_UPDATED_AT
from recordbase.services.document_store import DocumentStore, persistence_guard
from recordbase.services.records import RecordRepository


class ImportRowError(BaseModel):
    """A row that failed to import, numbered as in the source file."""

    row: int = Field(ge=0)
    error: str

    model_config = {"frozen": True}


class ImportResult(BaseModel):
    """Outcome of an import: rows stored plus the rows that were rejected."""

    imported: int = Field(ge=0)
    errors: list[ImportRowError] = Field(default_factory=list)

    model_config = {"frozen": True}


class ExportResult(BaseModel):
    """Header and rows of an export, ready for serialization."""

    header: list[str]
    rows: list[dict[str, Any]] = Field(default_factory=list)

    model_config = {"frozen": True}


class BulkTransferEngine:
    """Imports rows through RecordRepository and exports live records.

    Imports never stop at a bad row: each failure is collected and the next
    row is tried. Exports follow the current schema, so values of deleted
    fields are left out unless include_legacy is requested.
    """

    def __init__(
        self,
        store: DocumentStore,
        records: RecordRepository,
        export_limit: int = 5000,
        header_offset: int = 2,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._records = records
        self._export_limit = export_limit
        self._header_offset = header_offset
        self._logger = logger or structlog.get_logger(__name__)

    async def import_rows(
        self,
        table_id: str,
        rows: Iterable[Mapping[str, Any]],
        actor_id: str | None = None,
    ) -> ImportResult:
        """Insert rows in order, collecting per-row failures.

        Args:
            table_id: Target table.
            rows: Parsed rows keyed by column name, in file order.
            actor_id: Attributed as creator of every imported record.

        Returns:
            ImportResult; failing rows are numbered index + header_offset.
            Reserved row columns are ignored unless the table declares a
            field of that name.

        Raises:
            NotFoundError: If the table does not exist.
        """
        table = await self._store.get_table(table_id)
        if table is None:
            raise NotFoundError("Table")

        # Exported id and timestamp columns describe the source record, not data.
        dropped = RESERVED_ROW_KEYS - set(table.field_names())

        self._logger.info("import_started", table_id=table_id)

        imported = 0
        errors: list[ImportRowError] = []
        for index, row in enumerate(rows):
            try:
                payload = {k: v for k, v in row.items() if k not in dropped}
                await self._records.insert(table_id, payload, actor_id)
            except RecordbaseError as e:
                row_number = index + self._header_offset
                self._logger.warning("import_row_failed", table_id=table_id, row=row_number, error=e.message)
                errors.append(ImportRowError(row=row_number, error=e.message))
            else:
                imported += 1

        self._logger.info(
            "import_completed",
            table_id=table_id,
            imported=imported,
            error_count=len(errors),
        )
        return ImportResult(imported=imported, errors=errors)

    async def export_all(self, table_id: str, include_legacy: bool = False) -> ExportResult:
        """Export live records, newest first, shaped by the current schema.

        Args:
            table_id: Table to export.
            include_legacy: Also emit data keys no longer in the schema, as
                extra trailing columns.

        Raises:
            NotFoundError: If the table does not exist.
        """
        table = await self._store.get_table(table_id)
        if table is None:
            raise NotFoundError("Table")

        with persistence_guard(self._logger, "export_failed", table_id=table_id):
            records = await self._store.list_records(table_id, limit=self._export_limit)

        field_names = table.field_names()
        legacy: list[str] = []
        if include_legacy:
            known = set(field_names)
            legacy = sorted({key for record in records for key in record.data if key not in known})

        header = [ROW_ID, *field_names, ROW_CREATED_AT, ROW_UPDATED_AT, *legacy]
        rows = []
        for record in records:
            row = {ROW_ID: record.id}
            row.update({name: record.data.get(name) for name in field_names})
            row[ROW_CREATED_AT] = record.created_at.isoformat()
            row[ROW_UPDATED_AT] = record.updated_at.isoformat()
            row.update({name: record.data.get(name) for name in legacy})
            rows.append(row)

        self._logger.info("export_completed", table_id=table_id, row_count=len(rows), legacy_columns=len(legacy))
        return ExportResult(header=header, rows=rows)

    async def import_csv(self, table_id: str, text: str, actor_id: str | None = None) -> ImportResult:
        return await self.import_rows(table_id, parse_csv(text), actor_id)

    async def export_csv(self, table_id: str, include_legacy: bool = False) -> str:
        return render_csv(await self.export_all(table_id, include_legacy=include_legacy))


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse CSV with a header row into dicts; cells are trimmed, blank lines skipped."""
    reader = csv.reader(io.StringIO(text))
    header: list[str] | None = None
    rows: list[dict[str, str]] = []
    for cells in reader:
        if not any(cell.strip() for cell in cells):
            continue
        cells = [cell.strip() for cell in cells]
        if header is None:
            header = cells
            continue
        rows.append(dict(zip(header, cells)))
    return rows


def render_csv(export: ExportResult) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(export.header)
    for row in export.rows:
        writer.writerow([_cell(row.get(column)) for column in export.header])
    return buffer.getvalue()


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
