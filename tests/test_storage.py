"""
Record Storage Tests
====================

Verifies:
1. Create, find, update and reload behave the same on every store
2. The before-save snapshot moves only on load and successful save
3. Timestamps round-trip as aware UTC
4. Failures surface as PersistenceFailure with a code
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FROZEN_NOW
from timestamp_states import PersistenceFailure, Record, SQLiteRecordStore
from timestamp_states.errors import ErrorCode
from timestamp_states.query import TimeRange
from timestamp_states.storage import ColumnFilter, FilterOp, InMemoryRecordStore


@pytest.fixture
def note_model(store):
    class Note(Record):
        __columns__ = {"title": str, "pinned": bool, "written_at": datetime}
        __store__ = store

    return Note


class TestRecord:

    def test_default_table_name(self):
        class ShippingLabel(Record):
            pass

        assert ShippingLabel.__table__ == "shipping_labels"

    def test_create_and_find(self, note_model):
        note = note_model.create(title="hello", pinned=True, written_at=FROZEN_NOW)

        found = note_model.find(note.id)

        assert found == note
        assert found.title == "hello"
        assert found.pinned is True
        assert found.written_at == FROZEN_NOW

    def test_naive_timestamps_are_utc(self, note_model):
        note = note_model.create(title="naive", written_at=datetime(2023, 11, 1, 9, 30))

        assert note_model.find(note.id).written_at == datetime(2023, 11, 1, 9, 30, tzinfo=timezone.utc)

    def test_offset_timestamps_are_converted(self, note_model):
        local = datetime(2023, 11, 1, 9, 30, tzinfo=timezone(timedelta(hours=-4)))
        note = note_model.create(title="local", written_at=local)

        stored = note_model.find(note.id).written_at

        assert stored == local
        assert stored.utcoffset() == timedelta(0)

    def test_update_and_reload(self, note_model):
        note = note_model.create(title="draft")
        copy = note_model.find(note.id)

        note.update(title="final")
        copy.reload()

        assert copy.title == "final"

    def test_find_missing(self, note_model):
        with pytest.raises(PersistenceFailure) as excinfo:
            note_model.find(999)
        assert excinfo.value.code == ErrorCode.RECORD_NOT_FOUND

    def test_reload_unsaved(self, note_model):
        with pytest.raises(PersistenceFailure) as excinfo:
            note_model(title="unsaved").reload()
        assert excinfo.value.code == ErrorCode.RECORD_NOT_FOUND

    def test_unknown_column(self, note_model):
        with pytest.raises(TypeError):
            note_model(colour="red")

    def test_unsaved_records_compare_by_identity(self, note_model):
        first, second = note_model(title="a"), note_model(title="a")

        assert first != second
        assert first == first


class TestSnapshot:

    def test_new_record_has_empty_snapshot(self, note_model):
        note = note_model(title="x", written_at=FROZEN_NOW)

        assert note.is_new
        assert note.value_before_save("written_at") is None
        assert note.changes() == {"title": (None, "x"), "written_at": (None, FROZEN_NOW)}

    def test_snapshot_moves_on_save(self, note_model):
        note = note_model.create(title="x")
        note.written_at = FROZEN_NOW

        assert note.value_before_save("written_at") is None

        note.save()

        assert note.value_before_save("written_at") == FROZEN_NOW
        assert note.changes() == {}

    def test_loaded_record_snapshot(self, note_model):
        note = note_model.create(title="x", written_at=FROZEN_NOW)

        assert note_model.find(note.id).value_before_save("written_at") == FROZEN_NOW


class TestColumnTypes:

    @pytest.mark.parametrize("value", [True, 1, "2023-11-01", "yesterday"])
    def test_non_datetime_in_timestamp_column_is_rejected(self, note_model, value):
        note = note_model.create(title="x")
        note.written_at = value

        with pytest.raises(PersistenceFailure) as excinfo:
            note.save()

        assert excinfo.value.code == ErrorCode.PERSISTENCE_FAILED
        assert note_model.find(note.id).written_at is None
        assert note.value_before_save("written_at") is None

    def test_rejected_on_create(self, note_model):
        with pytest.raises(PersistenceFailure):
            note_model.create(title="x", written_at=True)

        assert note_model.all() == []

    def test_undecodable_sqlite_value_is_wrapped(self):
        store = SQLiteRecordStore()
        try:
            store.ensure_table("notes", {"written_at": datetime})
            record_id = store.insert("notes", {"written_at": "1"})

            with pytest.raises(PersistenceFailure):
                store.fetch("notes", record_id)
            with pytest.raises(PersistenceFailure):
                store.select("notes")
        finally:
            store.close()


class TestQueries:

    def test_where_and_null_filters(self, note_model):
        note_model.create(title="a", written_at=FROZEN_NOW)
        note_model.create(title="b")
        note_model.create(title="a")

        assert note_model.query().where(title="a").count() == 2
        assert note_model.query().where(title="a").where_null("written_at").count() == 1
        assert note_model.query().where_not_null("written_at").first().title == "a"
        assert note_model.query().where(written_at=None).count() == 2

    def test_results_are_ordered_by_id(self, note_model):
        created = [note_model.create(title=str(i)) for i in range(5)]

        assert note_model.all() == created

    def test_contains_and_exists(self, note_model):
        note = note_model.create(title="a")

        assert note in note_model.query().where(title="a")
        assert not note_model.query().where(title="zzz").exists()

    def test_filter_on_unknown_column(self, note_model):
        with pytest.raises(PersistenceFailure):
            note_model.query().where_null("nope")

    def test_unknown_scope(self, note_model):
        with pytest.raises(AttributeError):
            note_model.query().pinned_recently()


class TestStores:

    def test_update_of_missing_row(self, store):
        store.ensure_table("notes", {"title": str})

        with pytest.raises(PersistenceFailure) as excinfo:
            store.update("notes", 42, {"title": "x"})
        assert excinfo.value.code == ErrorCode.RECORD_NOT_FOUND

    def test_in_memory_rows_are_copies(self):
        store = InMemoryRecordStore()
        store.ensure_table("notes", {"title": str})
        record_id = store.insert("notes", {"title": "a"})

        row = store.fetch("notes", record_id)
        row["title"] = "mutated"

        assert store.fetch("notes", record_id)["title"] == "a"

    def test_sqlite_errors_are_wrapped(self):
        store = SQLiteRecordStore()
        try:
            with pytest.raises(PersistenceFailure):
                store.select("missing_table")
        finally:
            store.close()

    def test_invalid_identifier(self):
        store = SQLiteRecordStore()
        try:
            with pytest.raises(PersistenceFailure):
                store.ensure_table("notes; DROP TABLE x", {"title": str})
        finally:
            store.close()

    def test_sqlite_file_persists(self, tmp_path):
        path = tmp_path / "notes.db"
        writer = SQLiteRecordStore(path)
        writer.ensure_table("notes", {"written_at": datetime})
        record_id = writer.insert("notes", {"written_at": FROZEN_NOW})
        writer.close()

        reader = SQLiteRecordStore(path)
        reader.ensure_table("notes", {"written_at": datetime})
        try:
            assert reader.fetch("notes", record_id)["written_at"] == FROZEN_NOW
        finally:
            reader.close()

    def test_range_filter_parity(self, store):
        store.ensure_table("notes", {"written_at": datetime})
        for day in (1, 2, 3):
            store.insert("notes", {"written_at": datetime(2023, 11, day, tzinfo=timezone.utc)})

        half_open = ColumnFilter(
            "written_at", FilterOp.IN_RANGE,
            time_range=TimeRange(datetime(2023, 11, 1), datetime(2023, 11, 3)),
        )
        closed = ColumnFilter(
            "written_at", FilterOp.IN_RANGE,
            time_range=TimeRange(datetime(2023, 11, 1), datetime(2023, 11, 3), inclusive_end=True),
        )

        assert len(store.select("notes", (half_open,))) == 2
        assert len(store.select("notes", (closed,))) == 3
