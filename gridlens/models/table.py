from __future__ import annotations

import datetime as _dt
import hashlib
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import petl as etl

from gridlens.errors import QueryError

INTEGER = "integer"
NUMBER = "number"
BOOLEAN = "boolean"
STRING = "string"
DATETIME = "datetime"
NULL = "null"

COLUMN_TYPES = (INTEGER, NUMBER, BOOLEAN, STRING, DATETIME, NULL)

TableSchema = Dict[str, Any]

_TRUE = {"true", "yes", "t", "y"}
_FALSE = {"false", "no", "f", "n"}


def cell_text(value: Any) -> str:
    """Textual rendering of a cell, shared by search, widths and drawing."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if value.is_integer() and abs(value) < 1e16:
            return f"{value:.1f}"
        return repr(value)
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return f"Blob (Length: {len(value)})"
    return str(value)


def value_type(value: Any) -> str:
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return INTEGER
    if isinstance(value, float):
        return NUMBER
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return DATETIME
    return STRING


def infer_value_type(values: Iterable[Any]) -> str:
    """Column type from already-typed Python values.

    integer widens to number; any other mix is string.
    """
    seen = set()
    for v in values:
        t = value_type(v)
        if t != NULL:
            seen.add(t)
    if not seen:
        return NULL
    if len(seen) == 1:
        return seen.pop()
    if seen == {INTEGER, NUMBER}:
        return NUMBER
    return STRING


# ---------------- loader-side inference from text ----------------

def _cast_integer(s: str) -> int:
    if "." in s or "e" in s.lower():
        raise ValueError(s)
    return int(s)


def _cast_number(s: str) -> float:
    return float(s)


def _cast_boolean(s: str) -> bool:
    low = s.lower()
    if low in _TRUE:
        return True
    if low in _FALSE:
        return False
    raise ValueError(s)


def _cast_datetime(s: str) -> Any:
    if len(s) < 8:
        raise ValueError(s)
    try:
        return _dt.date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return _dt.datetime.fromisoformat(s)
    except ValueError:
        return _dt.time.fromisoformat(s)


_CASTS = (
    (INTEGER, _cast_integer),
    (NUMBER, _cast_number),
    (BOOLEAN, _cast_boolean),
    (DATETIME, _cast_datetime),
)


def infer_column(values: Sequence[Any]) -> Tuple[str, List[Any]]:
    """Infer a type for a column of raw text values and cast it.

    A cast is accepted only if it introduces no new nulls; empty strings are
    nulls. Columns where no cast succeeds stay strings.
    """
    cleaned: List[Any] = []
    for v in values:
        if v is None or (isinstance(v, str) and v.strip() == ""):
            cleaned.append(None)
        elif isinstance(v, str):
            cleaned.append(v.strip())
        else:
            cleaned.append(v)

    if all(v is None for v in cleaned):
        return NULL, cleaned
    if any(not isinstance(v, str) for v in cleaned if v is not None):
        return infer_value_type(cleaned), cleaned

    for typ, cast in _CASTS:
        out: List[Any] = []
        try:
            for v in cleaned:
                out.append(None if v is None else cast(v))
        except (ValueError, OverflowError):
            continue
        if typ == NUMBER and any(isinstance(x, float) and math.isnan(x) for x in out):
            continue
        return typ, out
    return STRING, [None if v is None else values[i] for i, v in enumerate(cleaned)]


# ---------------- Table ----------------

@dataclass(frozen=True)
class Column:
    name: str
    type: str
    values: Tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.type not in COLUMN_TYPES:
            raise QueryError(
                "E_UNSUPPORTED_OPERATION",
                f"Unsupported column type {self.type!r} for column {self.name!r}.",
                hint="Supported types: " + ", ".join(COLUMN_TYPES),
            )
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(self.values))

    def __len__(self) -> int:
        return len(self.values)

    def bounds(self) -> Optional[Tuple[Any, Any]]:
        """Smallest and largest non-null value; None if there are none or they do not compare."""
        present = [v for v in self.values if v is not None]
        if not present:
            return None
        try:
            return min(present), max(present)
        except TypeError:
            return None


@dataclass(frozen=True)
class Table:
    """Immutable columnar table.

    Every column has the same length. Transformations build new tables;
    nothing mutates an existing one, so tables can be shared between tabs
    and worker threads without locking.
    """

    columns: Tuple[Column, ...] = ()
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.columns, tuple):
            object.__setattr__(self, "columns", tuple(self.columns))
        lengths = {len(c) for c in self.columns}
        if len(lengths) > 1:
            raise QueryError(
                "E_TABLE_SHAPE",
                "All columns of a table must have the same length.",
                hint=", ".join(f"{c.name}={len(c)}" for c in self.columns),
            )
        index: Dict[str, int] = {}
        for i, c in enumerate(self.columns):
            if c.name in index:
                raise QueryError(
                    "E_DUPLICATE_COLUMN",
                    f"Column name {c.name!r} appears more than once.",
                    hint="Rename one of the columns, e.g. with 'sql SELECT a AS a2, ...'.",
                )
            index[c.name] = i
        object.__setattr__(self, "_index", index)

    # ---------- construction ----------
    @classmethod
    def empty(cls) -> "Table":
        return cls(())

    @classmethod
    def from_rows(
        cls,
        header: Sequence[str],
        rows: Iterable[Sequence[Any]],
        types: Optional[Sequence[Optional[str]]] = None,
    ) -> "Table":
        header = [str(h) for h in header]
        data: List[List[Any]] = [[] for _ in header]
        width = len(header)
        for row in rows:
            row = tuple(row)
            for i in range(width):
                data[i].append(row[i] if i < len(row) else None)
        cols = []
        for i, name in enumerate(header):
            typ = types[i] if types is not None and i < len(types) else None
            if typ is None:
                typ = infer_value_type(data[i])
            cols.append(Column(name, typ, tuple(data[i])))
        return cls(tuple(cols))

    @classmethod
    def from_petl(cls, tbl: Any, types: Optional[Dict[str, str]] = None) -> "Table":
        """Materialize a petl table. `types` maps column names to known types."""
        it = iter(tbl)
        try:
            header = list(next(it))
        except StopIteration:
            return cls.empty()
        types = types or {}
        return cls.from_rows(header, it, [types.get(str(h)) for h in header])

    def to_petl(self) -> Any:
        return etl.wrap([self.header] + [list(r) for r in self.rows()])

    # ---------- shape ----------
    @property
    def header(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def types(self) -> Dict[str, str]:
        return {c.name: c.type for c in self.columns}

    @property
    def num_rows(self) -> int:
        return len(self.columns[0]) if self.columns else 0

    @property
    def num_columns(self) -> int:
        return len(self.columns)

    def has_column(self, name: str) -> bool:
        return name in self._index

    def index_of(self, name: str) -> int:
        return self._index[name]

    def column(self, name: str) -> Column:
        return self.columns[self._index[name]]

    def schema(self) -> TableSchema:
        return {"fields": [{"name": c.name, "type": c.type} for c in self.columns]}

    # ---------- access ----------
    def cell(self, row: int, col: int) -> Any:
        return self.columns[col].values[row]

    def row(self, i: int) -> Tuple[Any, ...]:
        return tuple(c.values[i] for c in self.columns)

    def rows(self, start: int = 0, stop: Optional[int] = None) -> Iterator[Tuple[Any, ...]]:
        stop = self.num_rows if stop is None else min(stop, self.num_rows)
        for i in range(max(start, 0), stop):
            yield self.row(i)

    # ---------- derivation ----------
    def take(self, indices: Sequence[int]) -> "Table":
        """New table holding the given rows, in the given order."""
        return Table(tuple(Column(c.name, c.type, tuple(c.values[i] for i in indices)) for c in self.columns))

    def project(self, names: Sequence[str]) -> "Table":
        return Table(tuple(self.column(n) for n in names))

    def fingerprint(self) -> str:
        h = hashlib.sha256()
        for c in self.columns:
            h.update(repr((c.name, c.type)).encode("utf-8"))
        for r in self.rows():
            h.update(repr(r).encode("utf-8"))
        return h.hexdigest()

    def null_counts(self) -> Dict[str, int]:
        return {c.name: sum(1 for v in c.values if v is None) for c in self.columns}

    def __str__(self) -> str:
        pairs = ", ".join(f"{c.name}:{c.type}" for c in self.columns[:8])
        if len(self.columns) > 8:
            pairs += ", …"
        return f"Table({self.num_rows} rows; {pairs})"
