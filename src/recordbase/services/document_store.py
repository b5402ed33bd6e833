"""Document store for table definitions and records, persisted to SQLite.

Uses SQLAlchemy's native async support with aiosqlite. Table schemas and record
payloads are JSON documents; record filtering reaches into the payload with
SQLite's json_extract, so only equality on top-level keys is supported. A match
requires the stored JSON type to agree with the filter value: true never equals 1
and "1" never equals 1.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.expression import ColumnElement
from sqlmodel import SQLModel

from recordbase.models.record import Record
from recordbase.models.table import TableDefinition
from recordbase.models.tables import RecordRow, TableDefinitionRow

# Columns records may be ordered by at the storage level.
ORDERABLE_COLUMNS = {
    "created_at": RecordRow.created_at,
    "updated_at": RecordRow.updated_at,
}


class DocumentStore:
    """Persists table definitions and record documents via SQLModel.

    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing. Every write is a
    single-row statement; there are no multi-document transactions.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    def _session(self) -> AsyncSession:
        return AsyncSession(self._engine, expire_on_commit=False)

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._logger.info("document_store_initialized")

    async def dispose(self) -> None:
        await self._engine.dispose()

    # Table definitions

    async def create_table(self, table: TableDefinition) -> None:
        """Insert a new table definition.

        Raises:
            sqlalchemy.exc.IntegrityError: If (tenant_id, name) is already taken.
        """
        async with self._session() as session:
            session.add(self._table_to_row(table))
            await session.commit()
        self._logger.debug("table_row_created", table_id=table.id, tenant_id=table.tenant_id)

    async def save_table(self, table: TableDefinition) -> None:
        """Rewrite a table definition document wholesale."""
        row = self._table_to_row(table)
        async with self._session() as session:
            existing = await session.get(TableDefinitionRow, row.id)
            if existing:
                existing.display_name = row.display_name
                existing.description = row.description
                existing.fields = row.fields
                existing.relations = row.relations
                existing.version = row.version
                existing.updated_at = row.updated_at
            else:
                session.add(row)
            await session.commit()
        self._logger.debug("table_row_saved", table_id=table.id, version=table.version)

    async def get_table(self, table_id: str) -> TableDefinition | None:
        async with self._session() as session:
            row = await session.get(TableDefinitionRow, table_id)
            if row is None:
                return None
            return self._row_to_table(row)

    async def get_table_by_name(self, tenant_id: str, name: str) -> TableDefinition | None:
        async with self._session() as session:
            statement = select(TableDefinitionRow).where(
                TableDefinitionRow.tenant_id == tenant_id,
                TableDefinitionRow.name == name,
            )
            result = await session.execute(statement)
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return self._row_to_table(row)

    async def list_tables(self, tenant_id: str) -> list[TableDefinition]:
        """All tables for a tenant, newest first."""
        async with self._session() as session:
            statement = (
                select(TableDefinitionRow)
                .where(TableDefinitionRow.tenant_id == tenant_id)
                .order_by(TableDefinitionRow.created_at.desc())
            )
            result = await session.execute(statement)
            return [self._row_to_table(row) for row in result.scalars().all()]

    # Records

    async def save_record(self, record: Record) -> None:
        """Insert or overwrite a record document."""
        row = self._record_to_row(record)
        async with self._session() as session:
            existing = await session.get(RecordRow, row.id)
            if existing:
                existing.data = row.data
                existing.updated_by = row.updated_by
                existing.updated_at = row.updated_at
                existing.deleted_at = row.deleted_at
            else:
                session.add(row)
            await session.commit()
        self._logger.debug("record_row_saved", record_id=record.id, table_id=record.table_id)

    async def get_record(self, record_id: str) -> Record | None:
        """Retrieve a record by id, soft-deleted or not."""
        async with self._session() as session:
            row = await session.get(RecordRow, record_id)
            if row is None:
                return None
            return self._row_to_record(row)

    async def list_records(
        self,
        table_id: str,
        filters: dict[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        offset: int = 0,
        limit: int | None = None,
        exclude_id: str | None = None,
    ) -> list[Record]:
        """List live (not soft-deleted) records of a table.

        Args:
            table_id: Owning table.
            filters: Exact-match predicates on top-level data keys.
            order_by: "created_at" or "updated_at".
            descending: Sort direction for order_by.
            offset: Rows to skip.
            limit: Maximum rows to return, or None for all.
            exclude_id: A record id to leave out (the record being updated).

        Returns:
            Matching records in storage order.
        """
        column = ORDERABLE_COLUMNS.get(order_by)
        if column is None:
            raise ValueError(f"cannot order records by '{order_by}'")

        statement = select(RecordRow).where(*self._live_predicates(table_id, filters))
        if exclude_id is not None:
            statement = statement.where(RecordRow.id != exclude_id)
        direction = column.desc() if descending else column.asc()
        tiebreak = RecordRow.id.desc() if descending else RecordRow.id.asc()
        statement = statement.order_by(direction, tiebreak).offset(offset)
        if limit is not None:
            statement = statement.limit(limit)

        async with self._session() as session:
            result = await session.execute(statement)
            return [self._row_to_record(row) for row in result.scalars().all()]

    async def count_records(self, table_id: str, filters: dict[str, Any] | None = None) -> int:
        """Count live records of a table matching the filters."""
        statement = select(func.count()).select_from(RecordRow).where(*self._live_predicates(table_id, filters))
        async with self._session() as session:
            result = await session.execute(statement)
            return int(result.scalar_one())

    async def count_live_records(self, table_ids: Iterable[str]) -> dict[str, int]:
        """Live record counts keyed by table id; tables without records are omitted."""
        ids = list(table_ids)
        if not ids:
            return {}
        statement = (
            select(RecordRow.table_id, func.count())
            .where(RecordRow.table_id.in_(ids), RecordRow.deleted_at.is_(None))
            .group_by(RecordRow.table_id)
        )
        async with self._session() as session:
            result = await session.execute(statement)
            return {table_id: int(count) for table_id, count in result.all()}

    def _live_predicates(self, table_id: str, filters: dict[str, Any] | None) -> list[ColumnElement[bool]]:
        predicates: list[ColumnElement[bool]] = [
            RecordRow.table_id == table_id,
            RecordRow.deleted_at.is_(None),
        ]
        for key, value in (filters or {}).items():
            extracted = func.json_extract(RecordRow.data, json_path(key))
            kind = func.json_type(RecordRow.data, json_path(key))
            if value is None:
                predicates.append(extracted.is_(None))
            elif isinstance(value, bool):
                # json_extract yields 1/0 for JSON booleans, so match on the type alone.
                predicates.append(kind == ("true" if value else "false"))
            elif isinstance(value, (int, float)):
                predicates.append(and_(kind.in_(("integer", "real")), extracted == value))
            else:
                predicates.append(and_(kind == "text", extracted == value))
        return predicates

    # Conversion

    def _table_to_row(self, table: TableDefinition) -> TableDefinitionRow:
        """Convert domain TableDefinition to SQLModel row; nested lists become JSON."""
        data = table.model_dump(mode="json")
        data["created_at"] = table.created_at
        data["updated_at"] = table.updated_at
        return TableDefinitionRow.model_validate(data)

    def _row_to_table(self, row: TableDefinitionRow) -> TableDefinition:
        """Convert SQLModel row to domain TableDefinition.

        SQLite doesn't preserve timezone info, so we restore UTC timezone.
        """
        data = row.model_dump()
        data["fields"] = list(data.get("fields") or [])
        data["relations"] = list(data.get("relations") or [])
        for key in ("created_at", "updated_at"):
            data[key] = _restore_utc(data[key])
        return TableDefinition.model_validate(data)

    def _record_to_row(self, record: Record) -> RecordRow:
        return RecordRow.model_validate(record.model_dump())

    def _row_to_record(self, row: RecordRow) -> Record:
        data = row.model_dump()
        for key in ("created_at", "updated_at", "deleted_at"):
            if data.get(key) is not None:
                data[key] = _restore_utc(data[key])
        return Record.model_validate(data)


@contextmanager
def persistence_guard(logger: structlog.stdlib.BoundLogger, event: str, **context: Any) -> Iterator[None]:
    """Log a storage failure with context, then let it propagate unchanged."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(event, error=str(e), error_type=type(e).__name__, **context)
        raise


def json_path(key: str) -> str:
    """SQLite JSON path addressing a single top-level key."""
    if '"' in key or "\\" in key:
        raise ValueError(f"unsupported key for JSON path: {key!r}")
    return f'$."{key}"'


def _restore_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        # A single shared connection keeps the in-memory database alive
        # across sessions.
        return create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}")
