"""
Shared fixtures: one store per backend and fresh model types per test.

Model types are defined inside fixtures so that every test gets its own
registry, hooks and audit log.
"""

from datetime import datetime, timezone

import pytest

from timestamp_states import (
    InMemoryRecordStore,
    LogicalClock,
    PersistenceFailure,
    Record,
    SQLiteRecordStore,
    TimestampStates,
)


FROZEN_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingStore(InMemoryRecordStore):
    """In-memory store that logs writes into a shared event list."""

    def __init__(self, events=None):
        super().__init__()
        self.events = events if events is not None else []
        self.fail_next = False

    def _maybe_fail(self):
        if self.fail_next:
            self.fail_next = False
            raise PersistenceFailure("disk on fire")

    def insert(self, table, values):
        self._maybe_fail()
        self.events.append("save")
        return super().insert(table, values)

    def update(self, table, record_id, values):
        self._maybe_fail()
        self.events.append("save")
        super().update(table, record_id, values)


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        yield InMemoryRecordStore()
    else:
        sqlite_store = SQLiteRecordStore(":memory:")
        yield sqlite_store
        sqlite_store.close()


@pytest.fixture
def frozen_clock():
    return LogicalClock.frozen(FROZEN_NOW)


def make_model(store, columns=("installed_at",), clock=None, name="Device"):
    """Factory for a fresh model type with the given timestamp columns."""
    attributes = {
        "__table__": "devices",
        "__columns__": {"name": str, **{column: datetime for column in columns}},
        "__store__": store,
    }
    if clock is not None:
        attributes["__clock__"] = clock
    return type(name, (TimestampStates, Record), attributes)


@pytest.fixture
def device_model(store):
    model = make_model(store)
    model.timestamp_state("installed_at")
    return model
