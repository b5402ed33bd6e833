"""Integration tests for RecordEngine over a SQLite file.

These tests run a whole table lifecycle through the production factory:
schema edits, writes, queries and CSV transfer, with every step reopening the
database from disk so nothing depends on in-process state.
"""

from pathlib import Path

import pytest

from recordbase.errors import ValidationError
from recordbase.services.factory import create_record_engine


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "records.db"


@pytest.mark.slow
class TestRecordEngineLifecycle:
    """End-to-end table lifecycle against a real database file."""

    async def test_schema_records_and_transfer(self, db_path: Path, clock) -> None:
        async with create_record_engine(db_path=db_path, clock=clock) as engine:
            table = await engine.schema.create_table("acme", "employees", "Employees")
            for spec in (
                {"name": "first_name", "display_name": "First Name", "type": "text", "required": True},
                {"name": "last_name", "display_name": "Last Name", "type": "text"},
                {"name": "email", "display_name": "Email", "type": "text", "unique": True},
                {
                    "name": "full_name",
                    "display_name": "Full Name",
                    "type": "computed",
                    "formula": "first_name + last_name",
                },
            ):
                table = await engine.schema.add_field(table.id, spec)

        async with create_record_engine(db_path=db_path, clock=clock) as engine:
            result = await engine.transfer.import_csv(
                table.id,
                "first_name,last_name,email\nAnn,Lee,ann@x.com\n,Nobody,n@x.com\nBo,Ng,bo@x.com\n",
            )
            assert result.imported == 2
            assert [e.row for e in result.errors] == [3]

        async with create_record_engine(db_path=db_path, clock=clock) as engine:
            with pytest.raises(ValidationError):
                await engine.records.insert(table.id, {"first_name": "Ann", "email": "ann@x.com"})

            page = await engine.query.query(table.id, {"filters": {"email": "ann@x.com"}})
            assert page.total == 1
            assert page.records[0]["full_name"] == "AnnLee"

            await engine.records.soft_delete(table.id, page.records[0]["id"])
            reused = await engine.records.insert(table.id, {"first_name": "Ann", "email": "ann@x.com"})
            assert reused.data["full_name"] == "Ann"

        async with create_record_engine(db_path=db_path, clock=clock) as engine:
            summaries = await engine.schema.list_tables("acme")
            exported = await engine.transfer.export_csv(table.id)

        assert summaries[0].record_count == 2
        lines = exported.splitlines()
        assert lines[0] == "id,first_name,last_name,email,full_name,created_at,updated_at"
        assert len(lines) == 3
