"""Factory functions for creating and wiring the record engine services.

Provides a production factory backed by a SQLite file and a test factory that
uses an in-memory database for fast, isolated testing.
"""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from types import TracebackType

import structlog

from recordbase.config import Settings, get_settings
from recordbase.models.base import utc_now
from recordbase.services.document_store import DocumentStore, create_async_engine_from_path
from recordbase.services.formula import ComputedFieldEvaluator
from recordbase.services.locks import TableLocks
from recordbase.services.query import QueryPlanner
from recordbase.services.records import RecordRepository
from recordbase.services.schema_store import TableDefinitionStore
from recordbase.services.transfer import BulkTransferEngine
from recordbase.services.validator import FieldValidator


class RecordEngine:
    """The schema, record, query and transfer services over one shared store.

    Usable as an async context manager: entering creates the storage schema,
    leaving disposes of the database engine.
    """

    def __init__(
        self,
        store: DocumentStore,
        schema: TableDefinitionStore,
        records: RecordRepository,
        query: QueryPlanner,
        transfer: BulkTransferEngine,
    ) -> None:
        self.store = store
        self.schema = schema
        self.records = records
        self.query = query
        self.transfer = transfer

    async def initialize(self) -> None:
        await self.store.initialize_schema()

    async def close(self) -> None:
        await self.store.dispose()

    async def __aenter__(self) -> "RecordEngine":
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def create_record_engine(
    db_path: Path | str | None = None,
    settings: Settings | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> RecordEngine:
    """Create a RecordEngine persisted to a SQLite file.

    Args:
        db_path: SQLite database file. Defaults to settings.database_path.
        settings: Paging and transfer settings. Defaults to get_settings().
        clock: Source of timestamps for schema and record writes.

    Returns:
        Configured RecordEngine; call initialize() (or use async with) before use.
    """
    settings = settings or get_settings()
    path = Path(db_path) if db_path is not None else Path(settings.database_path)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)
    return _wire(str(path), settings, clock)


def create_test_record_engine(
    settings: Settings | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> RecordEngine:
    """Create a RecordEngine over an in-memory SQLite database.

    Each call creates independent storage, so tests don't interfere.
    """
    return _wire(":memory:", settings or Settings(), clock)


def _wire(db_path: str, settings: Settings, clock: Callable[[], datetime]) -> RecordEngine:
    logger = structlog.get_logger(__name__)

    store = DocumentStore(engine=create_async_engine_from_path(db_path), logger=logger)
    locks = TableLocks()

    schema = TableDefinitionStore(store=store, locks=locks, clock=clock, logger=logger)
    records = RecordRepository(
        store=store,
        validator=FieldValidator(logger=logger),
        evaluator=ComputedFieldEvaluator(logger=logger),
        locks=locks,
        clock=clock,
        logger=logger,
    )
    query = QueryPlanner(
        store=store,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
        logger=logger,
    )
    transfer = BulkTransferEngine(
        store=store,
        records=records,
        export_limit=settings.export_limit,
        header_offset=settings.import_header_offset,
        logger=logger,
    )
    return RecordEngine(store=store, schema=schema, records=records, query=query, transfer=transfer)
