"""Shared fixtures: a deterministic clock and in-memory engines."""

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import pytest

from recordbase.models.table import TableDefinition
from recordbase.services.factory import RecordEngine, create_test_record_engine


class TickingClock:
    """Clock that advances one second per call, so write order is unambiguous."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
async def engine(clock: TickingClock) -> AsyncIterator[RecordEngine]:
    """A fully wired engine over a fresh in-memory database."""
    engine = create_test_record_engine(clock=clock)
    await engine.initialize()
    yield engine
    await engine.close()


@pytest.fixture
async def employees(engine: RecordEngine) -> TableDefinition:
    """An empty 'employees' table owned by tenant 'acme'."""
    return await engine.schema.create_table("acme", "employees", "Employees")
