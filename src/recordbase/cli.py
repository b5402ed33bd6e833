"""Command-line access to tenant tables and records.

Every command opens the SQLite database (created on first use), runs one
operation and prints its result as JSON.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TypeVar

import structlog
import typer
from pydantic import BaseModel

from recordbase.config import get_settings
from recordbase.errors import RecordbaseError
from recordbase.services.factory import RecordEngine, create_record_engine

T = TypeVar("T")


class SortDirection(str, Enum):
    """Sort direction for query results."""

    ASC = "asc"
    DESC = "desc"


structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelNamesMapping().get(get_settings().log_level.upper(), logging.INFO)
    ),
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="recordbase",
    help="""Define tables and fields at runtime, then store, query and transfer records.

Examples:

  # Create a table and give it a field
  uv run recordbase create-table acme employees "Employees"
  uv run recordbase add-field <table-id> '{"name": "email", "display_name": "Email", "type": "text", "required": true}'

  # Insert and query records
  uv run recordbase insert <table-id> '{"email": "a@x.com"}'
  uv run recordbase query <table-id> --filters '{"email": "a@x.com"}'

  # Bulk transfer
  uv run recordbase import-csv <table-id> people.csv
  uv run recordbase export-csv <table-id> -o people.csv""",
    rich_markup_mode="markdown",
)

DbOption = typer.Option(
    None,
    "--db",
    help="SQLite database file (default: RECORDBASE_DATABASE_PATH or recordbase.db)",
)


def _run(db: Optional[str], operation: Callable[[RecordEngine], Awaitable[T]]) -> T:
    """Run one operation against an initialized engine, mapping domain errors to exit code 1."""

    async def runner() -> T:
        async with create_record_engine(db_path=db) as engine:
            return await operation(engine)

    try:
        return asyncio.run(runner())
    except RecordbaseError as e:
        logger.error("command_failed", code=e.code, error=e.message, details=e.details)
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1) from e


def _parse_json(value: str, name: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{name} must be valid JSON: {e}") from e


def _echo(result: BaseModel | list[BaseModel] | dict[str, Any]) -> None:
    if isinstance(result, list):
        data: Any = [item.model_dump(mode="json") for item in result]
    elif isinstance(result, BaseModel):
        data = result.model_dump(mode="json")
    else:
        data = result
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command()
def init(db: Optional[str] = DbOption) -> None:
    """Create the database and its storage tables."""

    async def noop(engine: RecordEngine) -> None:
        return None

    _run(db, noop)
    typer.echo("Database initialized")


@app.command("create-table")
def create_table(
    tenant: str = typer.Argument(..., help="Tenant that owns the table"),
    name: str = typer.Argument(..., help="snake_case table name"),
    display_name: str = typer.Argument(..., help="Human readable name"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Table description"),
    db: Optional[str] = DbOption,
) -> None:
    """Create an empty table for a tenant."""
    table = _run(db, lambda engine: engine.schema.create_table(tenant, name, display_name, description))
    _echo(table)


@app.command("list-tables")
def list_tables(
    tenant: str = typer.Argument(..., help="Tenant whose tables to list"),
    db: Optional[str] = DbOption,
) -> None:
    """List a tenant's tables with their record counts."""
    summaries = _run(db, lambda engine: engine.schema.list_tables(tenant))
    _echo(summaries)


@app.command("add-field")
def add_field(
    table_id: str = typer.Argument(..., help="Table id"),
    spec: str = typer.Argument(..., help="Field spec as JSON"),
    db: Optional[str] = DbOption,
) -> None:
    """Add a field to a table."""
    field_spec = _parse_json(spec, "spec")
    table = _run(db, lambda engine: engine.schema.add_field(table_id, field_spec))
    _echo(table)


@app.command()
def insert(
    table_id: str = typer.Argument(..., help="Table id"),
    payload: str = typer.Argument(..., help="Record data as JSON"),
    actor: Optional[str] = typer.Option(None, "--actor", "-a", help="Actor id recorded on the write"),
    db: Optional[str] = DbOption,
) -> None:
    """Insert a record."""
    data = _parse_json(payload, "payload")
    record = _run(db, lambda engine: engine.records.insert(table_id, data, actor))
    _echo(record)


@app.command()
def query(
    table_id: str = typer.Argument(..., help="Table id"),
    filters: Optional[str] = typer.Option(None, "--filters", "-f", help="Exact-match filters as JSON"),
    sort: Optional[str] = typer.Option(None, "--sort", "-s", help="Field to sort by"),
    order: SortDirection = typer.Option(SortDirection.ASC, "--order", "-o", help="Sort direction"),
    page: int = typer.Option(1, "--page", "-p", help="1-based page number"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Records per page"),
    db: Optional[str] = DbOption,
) -> None:
    """Query a page of records."""
    options: dict[str, Any] = {"page": page}
    if filters:
        options["filters"] = _parse_json(filters, "filters")
    if sort:
        options["sort"] = {"field": sort, "order": order.value}
    if limit is not None:
        options["limit"] = limit
    result = _run(db, lambda engine: engine.query.query(table_id, options))
    _echo(result)


@app.command("delete-record")
def delete_record(
    table_id: str = typer.Argument(..., help="Table id"),
    record_id: str = typer.Argument(..., help="Record id"),
    db: Optional[str] = DbOption,
) -> None:
    """Soft-delete a record."""
    _run(db, lambda engine: engine.records.soft_delete(table_id, record_id))
    typer.echo(f"Deleted record {record_id}")


@app.command("import-csv")
def import_csv(
    table_id: str = typer.Argument(..., help="Table id"),
    path: Path = typer.Argument(..., help="CSV file with a header row"),
    actor: Optional[str] = typer.Option(None, "--actor", "-a", help="Actor id recorded on each record"),
    db: Optional[str] = DbOption,
) -> None:
    """Import records from a CSV file. Bad rows are reported, not fatal."""
    if not path.exists():
        logger.error("file_not_found", path=str(path))
        raise typer.Exit(1)

    text = path.read_text(encoding="utf-8")
    result = _run(db, lambda engine: engine.transfer.import_csv(table_id, text, actor))

    for error in result.errors:
        logger.warning("import_row_rejected", row=error.row, error=error.error)
    typer.echo(f"Imported {result.imported} records")
    if result.errors:
        typer.echo(f"Rejected {len(result.errors)} rows")


@app.command("export-csv")
def export_csv(
    table_id: str = typer.Argument(..., help="Table id"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout"),
    include_legacy: bool = typer.Option(
        False,
        "--include-legacy",
        help="Also export values of fields that were deleted from the schema",
    ),
    db: Optional[str] = DbOption,
) -> None:
    """Export live records as CSV."""
    text = _run(db, lambda engine: engine.transfer.export_csv(table_id, include_legacy=include_legacy))
    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_text(text, encoding="utf-8")
    typer.echo(f"Exported to {output}")


@app.command()
def version() -> None:
    """Show version information."""
    from recordbase import __version__

    typer.echo(f"recordbase {__version__}")
