"""
Record Storage
==============

Reference persistence collaborator: a small record base class, chainable
queries and two interchangeable stores.

RESPONSIBILITY: get/set columns, snapshot values as of the last save,
synchronous save, range filters by column
ALLOWED INPUTS: Record subclasses declaring __table__ and __columns__
OUTPUTS: Record instances, RecordQuery results

WHAT THIS LAYER MUST NOT DO:
============================
- Know about timestamp-state vocabularies (scopes are registered into it)
- Retry failed writes
- Leak driver exceptions: they are wrapped in PersistenceFailure

STORES:
=======
- InMemoryRecordStore: dict-backed, for tests and scripts
- SQLiteRecordStore: standard library sqlite3, timestamps stored as
  ISO-8601 UTC text so that string order is time order
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple, Type
import logging
import re
import sqlite3

from .clock import ensure_utc
from .errors import ErrorCode, PersistenceFailure
from .query import TimeRange


logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SQL_TYPES: Dict[type, str] = {
    datetime: "TEXT",
    str: "TEXT",
    int: "INTEGER",
    bool: "INTEGER",
    float: "REAL",
}


def _quote(identifier: str) -> str:
    if not _IDENTIFIER.match(identifier):
        raise PersistenceFailure(f"Invalid identifier {identifier!r}")
    return f'"{identifier}"'


def normalize_value(value: Any) -> Any:
    """Datetimes are always held as aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


# =============================================================================
# FILTERS
# =============================================================================

class FilterOp(Enum):
    EQUALS = "equals"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"
    IN_RANGE = "in_range"


@dataclass(frozen=True)
class ColumnFilter:
    """One condition on one column."""
    column: str
    op: FilterOp
    value: Any = None
    time_range: Optional[TimeRange] = None

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        if self.op is FilterOp.IS_NULL:
            return current is None
        if self.op is FilterOp.NOT_NULL:
            return current is not None
        if self.op is FilterOp.EQUALS:
            return current == normalize_value(self.value)
        return isinstance(current, datetime) and self.time_range.contains(current)


# =============================================================================
# STORE INTERFACE (Dependency Inversion)
# =============================================================================

class RecordStore:
    """
    Abstract record store.

    Rows are plain dicts keyed by column name plus "id".
    """

    def ensure_table(self, table: str, columns: Mapping[str, type]) -> None:
        raise NotImplementedError

    def insert(self, table: str, values: Mapping[str, Any]) -> int:
        """Insert a row and return its new id."""
        raise NotImplementedError

    def update(self, table: str, record_id: int, values: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def fetch(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def select(self, table: str, filters: Tuple[ColumnFilter, ...] = ()) -> List[Dict[str, Any]]:
        """Rows matching every filter, ordered by id."""
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Dict-backed store. Rows are copied in and out."""

    def __init__(self):
        self._tables: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._columns: Dict[str, Dict[str, type]] = {}
        self._next_id: Dict[str, int] = {}

    def ensure_table(self, table: str, columns: Mapping[str, type]) -> None:
        self._tables.setdefault(table, {})
        self._columns.setdefault(table, {}).update(columns)
        self._next_id.setdefault(table, 1)

    def _rows(self, table: str) -> Dict[int, Dict[str, Any]]:
        if table not in self._tables:
            raise PersistenceFailure(f"Unknown table {table!r}")
        return self._tables[table]

    def insert(self, table: str, values: Mapping[str, Any]) -> int:
        rows = self._rows(table)
        record_id = self._next_id[table]
        self._next_id[table] = record_id + 1
        rows[record_id] = {k: normalize_value(v) for k, v in values.items()}
        rows[record_id]["id"] = record_id
        logger.debug("insert %s id=%s", table, record_id)
        return record_id

    def update(self, table: str, record_id: int, values: Mapping[str, Any]) -> None:
        rows = self._rows(table)
        if record_id not in rows:
            raise PersistenceFailure(
                f"{table} id={record_id} does not exist",
                ErrorCode.RECORD_NOT_FOUND,
            )
        rows[record_id].update({k: normalize_value(v) for k, v in values.items()})
        logger.debug("update %s id=%s", table, record_id)

    def fetch(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        row = self._rows(table).get(record_id)
        return dict(row) if row is not None else None

    def select(self, table: str, filters: Tuple[ColumnFilter, ...] = ()) -> List[Dict[str, Any]]:
        rows = self._rows(table)
        return [
            dict(rows[record_id])
            for record_id in sorted(rows)
            if all(f.matches(rows[record_id]) for f in filters)
        ]


class SQLiteRecordStore(RecordStore):
    """
    sqlite3-backed store.

    Holds one connection for its lifetime so that ":memory:" databases
    survive between calls.
    """

    def __init__(self, path: str = ":memory:"):
        self._path = str(path)
        self._conn = sqlite3.connect(self._path)
        self._conn.row_factory = sqlite3.Row
        self._columns: Dict[str, Dict[str, type]] = {}

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            logger.warning("sqlite failure on %s: %s", self._path, exc)
            raise PersistenceFailure(f"sqlite: {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def ensure_table(self, table: str, columns: Mapping[str, type]) -> None:
        definitions = ", ".join(
            f"{_quote(name)} {SQL_TYPES.get(kind, 'TEXT')}" for name, kind in columns.items()
        )
        with self._transaction() as conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {_quote(table)} "
                f"(id INTEGER PRIMARY KEY AUTOINCREMENT{', ' + definitions if definitions else ''})"
            )
        self._columns[table] = dict(columns)

    def _encode(self, value: Any) -> Any:
        value = normalize_value(value)
        if isinstance(value, datetime):
            return value.isoformat(timespec="microseconds")
        if isinstance(value, bool):
            return int(value)
        return value

    def _decode_row(self, table: str, row: sqlite3.Row) -> Dict[str, Any]:
        kinds = self._columns.get(table, {})
        decoded: Dict[str, Any] = {}
        for key in row.keys():
            value = row[key]
            kind = kinds.get(key)
            if value is not None and kind is datetime:
                try:
                    value = datetime.fromisoformat(value)
                except (TypeError, ValueError) as exc:
                    raise PersistenceFailure(
                        f"{table}.{key} holds {value!r}, not a timestamp"
                    ) from exc
            elif value is not None and kind is bool:
                value = bool(value)
            decoded[key] = value
        return decoded

    def insert(self, table: str, values: Mapping[str, Any]) -> int:
        names = list(values)
        if names:
            sql = (
                f"INSERT INTO {_quote(table)} ({', '.join(_quote(n) for n in names)}) "
                f"VALUES ({', '.join('?' for _ in names)})"
            )
        else:
            sql = f"INSERT INTO {_quote(table)} DEFAULT VALUES"
        with self._transaction() as conn:
            cursor = conn.execute(sql, [self._encode(values[n]) for n in names])
        logger.debug("insert %s id=%s", table, cursor.lastrowid)
        return cursor.lastrowid

    def update(self, table: str, record_id: int, values: Mapping[str, Any]) -> None:
        if not values:
            return
        assignments = ", ".join(f"{_quote(n)} = ?" for n in values)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {_quote(table)} SET {assignments} WHERE id = ?",
                [self._encode(v) for v in values.values()] + [record_id],
            )
        if cursor.rowcount == 0:
            raise PersistenceFailure(
                f"{table} id={record_id} does not exist",
                ErrorCode.RECORD_NOT_FOUND,
            )
        logger.debug("update %s id=%s", table, record_id)

    def fetch(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM {_quote(table)} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._decode_row(table, row) if row is not None else None

    def _where(self, filters: Tuple[ColumnFilter, ...]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for f in filters:
            column = _quote(f.column)
            if f.op is FilterOp.IS_NULL or (f.op is FilterOp.EQUALS and f.value is None):
                clauses.append(f"{column} IS NULL")
            elif f.op is FilterOp.NOT_NULL:
                clauses.append(f"{column} IS NOT NULL")
            elif f.op is FilterOp.EQUALS:
                clauses.append(f"{column} = ?")
                params.append(self._encode(f.value))
            else:
                upper = "<=" if f.time_range.inclusive_end else "<"
                clauses.append(f"{column} >= ? AND {column} {upper} ?")
                params.extend([self._encode(f.time_range.start), self._encode(f.time_range.end)])
        return (" WHERE " + " AND ".join(clauses) if clauses else ""), params

    def select(self, table: str, filters: Tuple[ColumnFilter, ...] = ()) -> List[Dict[str, Any]]:
        where, params = self._where(filters)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_quote(table)}{where} ORDER BY id", params
            ).fetchall()
        return [self._decode_row(table, row) for row in rows]


_default_store: Optional[RecordStore] = None


def default_store() -> RecordStore:
    """Process-wide in-memory store used by models that declare none."""
    global _default_store
    if _default_store is None:
        _default_store = InMemoryRecordStore()
    return _default_store


# =============================================================================
# QUERIES
# =============================================================================

Scope = Callable[..., "RecordQuery"]


class RecordQuery:
    """
    Immutable, chainable query over one model.

    Registered scopes are reachable as attributes:
        Device.query().installed().installed_at("2023-10-28 to 2023-11-29")
    """

    def __init__(self, model: Type[Record], filters: Tuple[ColumnFilter, ...] = ()):
        self._model = model
        self._filters = filters

    def _chain(self, condition: ColumnFilter) -> RecordQuery:
        self._model.check_column(condition.column)
        return RecordQuery(self._model, self._filters + (condition,))

    def where(self, **conditions: Any) -> RecordQuery:
        query = self
        for column, value in conditions.items():
            op = FilterOp.IS_NULL if value is None else FilterOp.EQUALS
            query = query._chain(ColumnFilter(column, op, value))
        return query

    def where_null(self, column: str) -> RecordQuery:
        return self._chain(ColumnFilter(column, FilterOp.IS_NULL))

    def where_not_null(self, column: str) -> RecordQuery:
        return self._chain(ColumnFilter(column, FilterOp.NOT_NULL))

    def where_in_range(self, column: str, time_range: TimeRange) -> RecordQuery:
        return self._chain(ColumnFilter(column, FilterOp.IN_RANGE, time_range=time_range))

    def __getattr__(self, name: str) -> Callable[..., RecordQuery]:
        if name.startswith("_"):
            raise AttributeError(name)
        scope = self._model.scopes().get(name)
        if scope is None:
            raise AttributeError(f"{self._model.__name__} query has no scope {name!r}")
        return lambda *args, **kwargs: scope(self, *args, **kwargs)

    @property
    def filters(self) -> Tuple[ColumnFilter, ...]:
        return self._filters

    def all(self) -> List[Record]:
        rows = self._model.store().select(self._model.__table__, self._filters)
        return [self._model.from_row(row) for row in rows]

    def first(self) -> Optional[Record]:
        results = self.all()
        return results[0] if results else None

    def count(self) -> int:
        return len(self.all())

    def exists(self) -> bool:
        return self.count() > 0

    def __iter__(self) -> Iterator[Record]:
        return iter(self.all())

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, record: object) -> bool:
        return any(found == record for found in self.all())

    def __repr__(self) -> str:
        return f"RecordQuery({self._model.__name__}, filters={len(self._filters)})"


# =============================================================================
# RECORD BASE
# =============================================================================

def _default_table(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower() + "s"


class Record:
    """
    Base class for persisted records.

    Subclasses declare:
        __columns__: column name -> python type
        __table__:   table name (defaults to snake_case plural of the class)
        __store__:   RecordStore (defaults to the shared in-memory store)
    """

    __table__: str = ""
    __columns__: Dict[str, type] = {}
    __store__: Optional[RecordStore] = None

    _scopes: Dict[str, Scope] = {}
    _prepared_stores: Set[int] = set()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "__table__" not in cls.__dict__:
            cls.__table__ = _default_table(cls.__name__)
        cls._scopes = dict(getattr(cls, "_scopes", {}))
        cls._prepared_stores = set()

    def __init__(self, **values: Any):
        self.__dict__["id"] = None
        self.__dict__["_saved_values"] = {}
        for column in self.__columns__:
            self.__dict__[column] = None
        for name, value in values.items():
            if not self._accepts_attribute(name):
                raise TypeError(f"{type(self).__name__} has no column {name!r}")
            setattr(self, name, value)

    def _accepts_attribute(self, name: str) -> bool:
        """Whether `name` may be passed to the constructor."""
        return name in self.__columns__

    # -------------------------------------------------------------------------
    # Class-level access
    # -------------------------------------------------------------------------

    @classmethod
    def store(cls) -> RecordStore:
        store = cls.__store__ or default_store()
        if id(store) not in cls._prepared_stores:
            store.ensure_table(cls.__table__, cls.__columns__)
            cls._prepared_stores.add(id(store))
        return store

    @classmethod
    def check_column(cls, column: str) -> None:
        if column != "id" and column not in cls.__columns__:
            raise PersistenceFailure(f"{cls.__name__} has no column {column!r}")

    @classmethod
    def define_scope(cls, name: str, scope: Scope) -> None:
        """Make `scope(query, *args)` available as RecordQuery.<name>(*args)."""
        cls._scopes[name] = scope

    @classmethod
    def remove_scope(cls, name: str) -> None:
        cls._scopes.pop(name, None)

    @classmethod
    def scopes(cls) -> Dict[str, Scope]:
        return dict(cls._scopes)

    @classmethod
    def query(cls) -> RecordQuery:
        return RecordQuery(cls)

    @classmethod
    def all(cls) -> List[Record]:
        return cls.query().all()

    @classmethod
    def find(cls, record_id: int) -> Record:
        row = cls.store().fetch(cls.__table__, record_id)
        if row is None:
            raise PersistenceFailure(
                f"{cls.__name__} id={record_id} does not exist",
                ErrorCode.RECORD_NOT_FOUND,
            )
        return cls.from_row(row)

    @classmethod
    def create(cls, **values: Any) -> Record:
        record = cls(**values)
        record.save()
        return record

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Record:
        record = cls.__new__(cls)
        record._hydrate(row)
        return record

    # -------------------------------------------------------------------------
    # Instance state
    # -------------------------------------------------------------------------

    def _hydrate(self, row: Mapping[str, Any]) -> None:
        values = {column: row.get(column) for column in self.__columns__}
        self.__dict__.update(values)
        self.__dict__["id"] = row.get("id")
        self.__dict__["_saved_values"] = dict(values)

    @property
    def is_new(self) -> bool:
        return self.id is None

    def column_values(self) -> Dict[str, Any]:
        return {column: getattr(self, column) for column in self.__columns__}

    def value_before_save(self, column: str) -> Any:
        """Column value as of the last load or successful save."""
        return self._saved_values.get(column)

    def changes(self) -> Dict[str, Tuple[Any, Any]]:
        """column -> (value before save, current value) for changed columns."""
        return {
            column: (self.value_before_save(column), value)
            for column, value in self.column_values().items()
            if normalize_value(value) != normalize_value(self.value_before_save(column))
        }

    def save(self) -> Record:
        """Insert or update; raises PersistenceFailure on failure."""
        store = type(self).store()
        values = self.column_values()
        self._check_types(values)
        if self.id is None:
            self.__dict__["id"] = store.insert(self.__table__, values)
        else:
            store.update(self.__table__, self.id, values)
        self.__dict__["_saved_values"] = dict(values)
        return self

    def _check_types(self, values: Mapping[str, Any]) -> None:
        for column, value in values.items():
            kind = self.__columns__.get(column)
            if value is not None and kind is datetime and not isinstance(value, datetime):
                raise PersistenceFailure(
                    f"{type(self).__name__}.{column} expects a datetime, "
                    f"got {type(value).__name__} {value!r}"
                )

    def update(self, **values: Any) -> Record:
        for name, value in values.items():
            if not self._accepts_attribute(name):
                raise TypeError(f"{type(self).__name__} has no column {name!r}")
            setattr(self, name, value)
        return self.save()

    def reload(self) -> Record:
        if self.id is None:
            raise PersistenceFailure(
                f"Cannot reload unsaved {type(self).__name__}",
                ErrorCode.RECORD_NOT_FOUND,
            )
        row = type(self).store().fetch(self.__table__, self.id)
        if row is None:
            raise PersistenceFailure(
                f"{type(self).__name__} id={self.id} does not exist",
                ErrorCode.RECORD_NOT_FOUND,
            )
        self._hydrate(row)
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record) or type(other) is not type(self):
            return NotImplemented
        if self.id is None or other.id is None:
            return self is other
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id)) if self.id is not None else id(self)

    def __repr__(self) -> str:
        values = ", ".join(f"{k}={v!r}" for k, v in self.column_values().items())
        return f"{type(self).__name__}(id={self.id!r}, {values})"
