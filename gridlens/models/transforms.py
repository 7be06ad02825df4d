from __future__ import annotations

import datetime as _dt
import functools
import json
import re
import sqlite3
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

import petl as etl

from gridlens.errors import GridLensError, ParseError, QueryError
from gridlens.models.table import (
    BOOLEAN,
    DATETIME,
    INTEGER,
    NULL,
    Column,
    NUMBER,
    Table,
    TableSchema,
    cell_text,
    infer_column,
)
from gridlens.util import suggest_column


@dataclass
class PipelineContext:
    table_name: str = "df"


# ---------------- Transform implementation registry ----------------

class TransformImpl:
    """Internal implementation for a Transform op.

    Users interact with `Transform(op, params)`.
    Implementations are registered by op name and invoked by `Transform.apply`.
    """

    op: str = ""

    @classmethod
    def validate_params(cls, params: Mapping[str, Any], input_schema: Optional[TableSchema] = None) -> None:
        return

    @classmethod
    def apply(cls, table: Table, *, params: Mapping[str, Any], context: PipelineContext) -> Table:
        raise QueryError(
            "E_UNSUPPORTED_OPERATION",
            f"Transform op '{cls.op}' is not implemented.",
            hint="Implement it as a TransformImpl and register it.",
        )

    @classmethod
    def output_schema(cls, input_schema: Optional[TableSchema], params: Mapping[str, Any]) -> Optional[TableSchema]:
        """Infer the output schema given an input schema.

        Return None if the schema cannot be determined statically.
        """
        return input_schema

    @classmethod
    def describe(cls, params: Mapping[str, Any]) -> str:
        return f"{cls.op} {dict(params)}"


TRANSFORM_REGISTRY: Dict[str, Type[TransformImpl]] = {}


def register_transform(op: str) -> Callable[[Type[TransformImpl]], Type[TransformImpl]]:
    """Decorator to register a TransformImpl under an op string."""

    def deco(cls: Type[TransformImpl]) -> Type[TransformImpl]:
        cls.op = op
        TRANSFORM_REGISTRY[op] = cls
        return cls

    return deco


def _schema_names(schema: Optional[TableSchema]) -> Optional[List[str]]:
    if not schema or not isinstance(schema.get("fields"), list):
        return None
    return [f["name"] for f in schema["fields"] if isinstance(f, dict) and "name" in f]


def _unknown_column(name: str, columns: List[str], where: str) -> QueryError:
    return QueryError(
        "E_UNKNOWN_COLUMN",
        f"Unknown column {name!r} in {where}.",
        hint=suggest_column(name, columns),
    )


# =========================
# Expression language (tokenizer + parser) used by filter
# =========================

class _ExprTok:
    __slots__ = ("typ", "val", "pos")

    def __init__(self, typ: str, val: Any, pos: int):
        self.typ = typ
        self.val = val
        self.pos = pos


_RE_WS = re.compile(r"\s+")
_RE_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")
_RE_NUMBER = re.compile(r"(?:\d+\.\d*|\d*\.\d+|\d+)(?:[eE][+-]?\d+)?")
_KEYWORDS = {"and", "or", "not", "true", "false", "null", "contains", "startswith", "endswith"}
_OPS_2 = {"==": "==", "!=": "!=", ">=": ">=", "<=": "<=", "<>": "!="}
_OPS_1 = {">", "<", "(", ")", "+", "-", "*", "/", "="}
_CMP_OPS = {"==", "!=", ">=", "<=", ">", "<"}
_STR_OPS = {"contains", "startswith", "endswith"}


def _caret(src: str, pos: int) -> str:
    return f"At position {pos}: {src}\n" + (" " * pos) + "^"


def _expr_tokenize(src: str) -> List[_ExprTok]:
    out: List[_ExprTok] = []
    i = 0
    n = len(src)

    while i < n:
        m = _RE_WS.match(src, i)
        if m:
            i = m.end()
            continue

        if src[i] in ("'", '"', "`"):
            q = src[i]
            j = i + 1
            buf = []
            while j < n:
                ch = src[j]
                if ch == "\\" and j + 1 < n:
                    buf.append(src[j + 1])
                    j += 2
                    continue
                if ch == q:
                    out.append(_ExprTok("IDENT" if q == "`" else "STR", "".join(buf), i))
                    i = j + 1
                    break
                buf.append(ch)
                j += 1
            else:
                raise ParseError(
                    "E_EXPR_PARSE",
                    "Unterminated string literal in expression.",
                    hint=_caret(src, i),
                )
            continue

        two = src[i: i + 2]
        if two in _OPS_2:
            out.append(_ExprTok("OP", _OPS_2[two], i))
            i += 2
            continue

        if src[i] in _OPS_1:
            out.append(_ExprTok("OP", "==" if src[i] == "=" else src[i], i))
            i += 1
            continue

        m = _RE_NUMBER.match(src, i)
        if m:
            s = m.group(0)
            is_float = any(ch in s for ch in ".eE")
            out.append(_ExprTok("NUM", float(s) if is_float else int(s), i))
            i = m.end()
            continue

        m = _RE_IDENT.match(src, i)
        if m:
            s = m.group(0)
            low = s.lower()
            if low in _KEYWORDS:
                out.append(_ExprTok("KW", low, i))
            else:
                out.append(_ExprTok("IDENT", s, i))
            i = m.end()
            continue

        raise ParseError(
            "E_EXPR_PARSE",
            f"Unexpected character {src[i]!r} in expression.",
            hint=_caret(src, i),
        )

    out.append(_ExprTok("EOF", None, n))
    return out


@functools.lru_cache(maxsize=256)
def _expr_parse(src: str) -> Any:
    toks = _expr_tokenize(src)
    k = 0

    def _peek() -> _ExprTok:
        return toks[k]

    def _eat(expected_typ: str, expected_val: Optional[str] = None) -> _ExprTok:
        nonlocal k
        t = toks[k]
        if t.typ != expected_typ or (expected_val is not None and t.val != expected_val):
            want = f"'{expected_val}'" if expected_val is not None else expected_typ.lower()
            found = "end of expression" if t.typ == "EOF" else f"'{t.val}'"
            raise ParseError(
                "E_EXPR_PARSE",
                f"Expected {want} but found {found}.",
                hint=_caret(src, t.pos),
            )
        k += 1
        return t

    def parse_expr():
        return parse_or()

    def parse_or():
        node = parse_and()
        while _peek().typ == "KW" and _peek().val == "or":
            _eat("KW", "or")
            rhs = parse_and()
            node = ("or", node, rhs)
        return node

    def parse_and():
        node = parse_not()
        while _peek().typ == "KW" and _peek().val == "and":
            _eat("KW", "and")
            rhs = parse_not()
            node = ("and", node, rhs)
        return node

    def parse_not():
        if _peek().typ == "KW" and _peek().val == "not":
            _eat("KW", "not")
            return ("not", parse_not())
        return parse_cmp()

    def parse_cmp():
        left = parse_add()
        t = _peek()
        if t.typ == "OP" and t.val in _CMP_OPS:
            _eat("OP")
            right = parse_add()
            return ("cmp", t.val, left, right)
        if t.typ == "KW" and t.val in _STR_OPS:
            _eat("KW")
            right = parse_add()
            return ("str", t.val, left, right)
        return left

    def parse_add():
        node = parse_mul()
        while _peek().typ == "OP" and _peek().val in {"+", "-"}:
            op_tok = _eat("OP")
            rhs = parse_mul()
            node = ("bin", op_tok.val, node, rhs)
        return node

    def parse_mul():
        node = parse_unary()
        while _peek().typ == "OP" and _peek().val in {"*", "/"}:
            op_tok = _eat("OP")
            rhs = parse_unary()
            node = ("bin", op_tok.val, node, rhs)
        return node

    def parse_unary():
        if _peek().typ == "OP" and _peek().val == "-":
            _eat("OP", "-")
            return ("neg", parse_unary())
        return parse_atom()

    def parse_atom():
        t = _peek()
        if t.typ == "OP" and t.val == "(":
            _eat("OP", "(")
            node = parse_expr()
            _eat("OP", ")")
            return node
        if t.typ == "IDENT":
            _eat("IDENT")
            return ("col", t.val, t.pos)
        if t.typ in ("NUM", "STR"):
            _eat(t.typ)
            return ("lit", t.val)
        if t.typ == "KW" and t.val in {"true", "false", "null"}:
            _eat("KW")
            return ("lit", {"true": True, "false": False, "null": None}[t.val])
        found = "end of expression" if t.typ == "EOF" else f"token '{t.val}'"
        raise ParseError(
            "E_EXPR_PARSE",
            f"Unexpected {found} in expression.",
            hint=_caret(src, t.pos),
        )

    ast = parse_expr()
    _eat("EOF")
    return ast


def _referenced_columns(node: Any) -> List[Tuple[str, int]]:
    out: List[Tuple[str, int]] = []
    if not isinstance(node, tuple):
        return out
    if node[0] == "col":
        out.append((node[1], node[2]))
        return out
    for child in node[1:]:
        out.extend(_referenced_columns(child))
    return out


# ---------------- value semantics ----------------

def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _as_temporal(v: Any) -> Any:
    if isinstance(v, _dt.datetime) or isinstance(v, _dt.time):
        return v
    if isinstance(v, _dt.date):
        return _dt.datetime(v.year, v.month, v.day)
    if isinstance(v, str):
        try:
            return _as_temporal(_dt.datetime.fromisoformat(v.strip()))
        except ValueError:
            return None
    return None


def _coerce_pair(a: Any, b: Any) -> Optional[Tuple[Any, Any]]:
    """Bring two non-null operands to a comparable form, or None."""
    if _is_number(a) and _is_number(b):
        return a, b
    if isinstance(a, bool) and isinstance(b, bool):
        return a, b
    if isinstance(a, str) and isinstance(b, str):
        return a, b
    if isinstance(a, (_dt.date, _dt.time)) or isinstance(b, (_dt.date, _dt.time)):
        ta, tb = _as_temporal(a), _as_temporal(b)
        if ta is not None and tb is not None and type(ta) is type(tb):
            return ta, tb
    return None


def _compare(op: str, a: Any, b: Any, *, strict: bool) -> bool:
    if op in {"==", "!="}:
        if a is None or b is None:
            eq = a is None and b is None
        else:
            pair = _coerce_pair(a, b)
            eq = (pair[0] == pair[1]) if pair is not None else False
        return eq if op == "==" else not eq
    if a is None or b is None:
        return False
    pair = _coerce_pair(a, b)
    if pair is None:
        if strict:
            raise QueryError(
                "E_TYPE_MISMATCH",
                f"Type mismatch in comparison: {a!r} {op} {b!r}.",
                hint="Compare numbers with numbers and text with quoted text, e.g. name == 'Jo'.",
            )
        return False
    x, y = pair
    if op == ">":
        return x > y
    if op == ">=":
        return x >= y
    if op == "<":
        return x < y
    return x <= y


def _arith(op: str, a: Any, b: Any) -> Any:
    if a is None or b is None:
        return None
    if _is_number(a) and _is_number(b):
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if b == 0:
            return None
        return a / b
    if op == "+" and isinstance(a, str) and isinstance(b, str):
        return a + b
    raise QueryError(
        "E_TYPE_MISMATCH",
        f"Cannot apply {op!r} to {a!r} and {b!r}.",
        hint="Arithmetic works on numeric columns; '+' also joins two strings.",
    )


@register_transform("filter")
class FilterTransform(TransformImpl):
    @classmethod
    def validate_params(cls, params: Mapping[str, Any], input_schema: Optional[TableSchema] = None) -> None:
        where = params.get("where")
        if not isinstance(where, str) or not where.strip():
            raise ParseError(
                "E_COMMAND_ARGS",
                "filter requires a non-empty expression.",
                hint="Example: filter age >= 30 and country == 'KE'",
            )
        strict = params.get("strict", True)
        if not isinstance(strict, bool):
            raise ParseError("E_COMMAND_ARGS", "filter params.strict must be a boolean.")
        ast = _expr_parse(where)
        columns = _schema_names(input_schema)
        if columns is not None:
            for name, _pos in _referenced_columns(ast):
                if name not in columns:
                    raise _unknown_column(name, columns, "filter expression")

    @classmethod
    def apply(cls, table: Table, *, params: Mapping[str, Any], context: PipelineContext) -> Table:
        where = params["where"]
        strict = params.get("strict", True)
        ast = _expr_parse(where)

        columns = table.header
        for name, _pos in _referenced_columns(ast):
            if not table.has_column(name):
                raise _unknown_column(name, columns, "filter expression")

        def _eval(node, row: Any) -> Any:
            tag = node[0]
            if tag == "lit":
                return node[1]
            if tag == "col":
                return row[node[1]]
            if tag == "and":
                return bool(_eval(node[1], row)) and bool(_eval(node[2], row))
            if tag == "or":
                return bool(_eval(node[1], row)) or bool(_eval(node[2], row))
            if tag == "not":
                return not bool(_eval(node[1], row))
            if tag == "neg":
                v = _eval(node[1], row)
                if v is None:
                    return None
                if not _is_number(v):
                    raise QueryError("E_TYPE_MISMATCH", f"Cannot negate {v!r}.")
                return -v
            if tag == "bin":
                return _arith(node[1], _eval(node[2], row), _eval(node[3], row))
            if tag == "cmp":
                return _compare(node[1], _eval(node[2], row), _eval(node[3], row), strict=strict)
            if tag == "str":
                a, b = _eval(node[2], row), _eval(node[3], row)
                if a is None or b is None:
                    return False
                sa, sb = cell_text(a), cell_text(b)
                if node[1] == "contains":
                    return sb in sa
                if node[1] == "startswith":
                    return sa.startswith(sb)
                return sa.endswith(sb)
            raise QueryError(
                "E_UNSUPPORTED_OPERATION",
                "Unsupported construct in filter expression.",
                hint="Use comparisons, and/or/not, literals, parentheses, and column names.",
            )

        selected = etl.select(table.to_petl(), lambda r: bool(_eval(ast, r)))
        return Table.from_petl(selected, types=table.types)

    @classmethod
    def describe(cls, params: Mapping[str, Any]) -> str:
        return f"filter {params.get('where')}"


@register_transform("select")
class SelectTransform(TransformImpl):
    @classmethod
    def validate_params(cls, params: Mapping[str, Any], input_schema: Optional[TableSchema] = None) -> None:
        cols = params.get("columns")
        if not isinstance(cols, (list, tuple)) or not cols or not all(isinstance(c, str) and c for c in cols):
            raise ParseError(
                "E_COMMAND_ARGS",
                "select requires a non-empty list of column names.",
                hint="Example: select id,name",
            )
        dupes = sorted({c for c in cols if list(cols).count(c) > 1})
        if dupes:
            raise QueryError(
                "E_DUPLICATE_COLUMN",
                "select lists column(s) more than once: " + ", ".join(dupes) + ".",
            )
        columns = _schema_names(input_schema)
        if columns is not None:
            for c in cols:
                if c not in columns:
                    raise _unknown_column(c, columns, "select")

    @classmethod
    def apply(cls, table: Table, *, params: Mapping[str, Any], context: PipelineContext) -> Table:
        cols = list(params["columns"])
        for c in cols:
            if not table.has_column(c):
                raise _unknown_column(c, table.header, "select")
        return Table.from_petl(etl.cut(table.to_petl(), *cols), types=table.types)

    @classmethod
    def output_schema(cls, input_schema: Optional[TableSchema], params: Mapping[str, Any]) -> Optional[TableSchema]:
        if not input_schema or "fields" not in input_schema:
            return input_schema
        by_name = {f.get("name"): f for f in input_schema.get("fields", [])}
        return {"fields": [by_name[c] for c in params.get("columns") or [] if c in by_name]}

    @classmethod
    def describe(cls, params: Mapping[str, Any]) -> str:
        return "select " + ",".join(params.get("columns") or [])


def _sort_key(v: Any) -> Any:
    if isinstance(v, _dt.date) and not isinstance(v, _dt.datetime):
        return _dt.datetime(v.year, v.month, v.day)
    return v


@register_transform("order")
class OrderTransform(TransformImpl):
    """Stable multi-key sort; nulls go last in both directions."""

    @classmethod
    def validate_params(cls, params: Mapping[str, Any], input_schema: Optional[TableSchema] = None) -> None:
        keys = params.get("keys")
        if not isinstance(keys, (list, tuple)) or not keys:
            raise ParseError(
                "E_COMMAND_ARGS",
                "order requires at least one sort key.",
                hint="Example: order score:desc,name",
            )
        for k in keys:
            if (
                not isinstance(k, (list, tuple))
                or len(k) != 2
                or not isinstance(k[0], str)
                or k[1] not in ("asc", "desc")
            ):
                raise ParseError(
                    "E_COMMAND_ARGS",
                    f"Invalid sort key {k!r}.",
                    hint="Each key is column[:asc|desc], e.g. order score:desc",
                )
        columns = _schema_names(input_schema)
        if columns is not None:
            for name, _direction in keys:
                if name not in columns:
                    raise _unknown_column(name, columns, "order")

    @classmethod
    def apply(cls, table: Table, *, params: Mapping[str, Any], context: PipelineContext) -> Table:
        keys = [(k[0], k[1]) for k in params["keys"]]
        for name, _direction in keys:
            if not table.has_column(name):
                raise _unknown_column(name, table.header, "order")

        indices = list(range(table.num_rows))
        # least significant key first; each pass is stable
        for name, direction in reversed(keys):
            values = table.column(name).values
            present = [i for i in indices if values[i] is not None]
            missing = [i for i in indices if values[i] is None]
            try:
                present.sort(key=lambda i: _sort_key(values[i]), reverse=(direction == "desc"))
            except TypeError as e:
                raise QueryError(
                    "E_TYPE_MISMATCH",
                    f"Column {name!r} holds values that cannot be ordered together.",
                    hint=str(e),
                ) from e
            indices = present + missing
        return table.take(indices)

    @classmethod
    def describe(cls, params: Mapping[str, Any]) -> str:
        return "order " + ",".join(f"{k[0]}:{k[1]}" for k in params.get("keys") or [])


_SQLITE_TYPES = {INTEGER: "INTEGER", NUMBER: "REAL", BOOLEAN: "INTEGER"}
_RE_NO_SUCH_COLUMN = re.compile(r"no such column: (.+)$")
_SQL_PARSE_MARKERS = ("syntax error", "incomplete input", "unrecognized token")
_RE_QUERY_START = re.compile(r"\s*\(?\s*(select|with|values)\b", re.IGNORECASE)


def _sql_value(v: Any) -> Any:
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, (_dt.date, _dt.time)):
        return v.isoformat()
    if isinstance(v, (list, tuple, dict)):
        # nested JSON values are stored as their JSON text
        return json.dumps(v, default=str)
    return v


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


@register_transform("sql")
class SqlTransform(TransformImpl):
    """Run a SELECT statement against the input loaded as an in-memory relation."""

    @classmethod
    def validate_params(cls, params: Mapping[str, Any], input_schema: Optional[TableSchema] = None) -> None:
        stmt = params.get("statement")
        if not isinstance(stmt, str) or not stmt.strip():
            raise ParseError(
                "E_COMMAND_ARGS",
                "sql requires a statement.",
                hint="Example: sql SELECT country, count(*) AS n FROM df GROUP BY country",
            )
        if not _RE_QUERY_START.match(stmt):
            first = stmt.strip().split(None, 1)[0].lower()
            raise QueryError(
                "E_UNSUPPORTED_OPERATION",
                f"Only queries are supported, not {first.upper()} statements.",
                hint="Start the statement with SELECT or WITH.",
            )

    @classmethod
    def apply(cls, table: Table, *, params: Mapping[str, Any], context: PipelineContext) -> Table:
        stmt = params["statement"]
        name = context.table_name
        conn = sqlite3.connect(":memory:")
        try:
            try:
                cls._load(conn, table, name)
            except (sqlite3.Error, OverflowError) as e:
                raise QueryError(
                    "E_SQL_FAILED",
                    f"Could not load the view into SQLite: {e}.",
                    hint="Columns holding very large integers or mixed values cannot be queried.",
                ) from e
            try:
                out = Table.from_petl(etl.fromdb(conn, stmt))
            except (sqlite3.Error, sqlite3.Warning) as e:
                raise cls._wrap_error(e, table, name) from e
        finally:
            conn.close()
        return cls._restore_types(out, table)

    @staticmethod
    def _load(conn: sqlite3.Connection, table: Table, name: str) -> None:
        if table.num_columns:
            cols = ", ".join(f"{_quote_ident(c.name)} {_SQLITE_TYPES.get(c.type, '')}".rstrip() for c in table.columns)
            conn.execute(f"CREATE TABLE {_quote_ident(name)} ({cols})")
            rows = [[_sql_value(v) for v in r] for r in table.rows()]
            if rows:
                etl.appenddb(etl.wrap([table.header] + rows), conn, name)
        else:
            conn.execute(f"CREATE TABLE {_quote_ident(name)} (_empty INTEGER)")
        if name != "_":
            conn.execute(f"CREATE VIEW \"_\" AS SELECT * FROM {_quote_ident(name)}")

    @staticmethod
    def _wrap_error(e: Exception, table: Table, name: str) -> GridLensError:
        msg = str(e)
        m = _RE_NO_SUCH_COLUMN.search(msg)
        if m:
            col = m.group(1).strip()
            return QueryError(
                "E_UNKNOWN_COLUMN",
                f"Unknown column {col!r} in sql statement.",
                hint=suggest_column(col.split(".")[-1], table.header),
            )
        if any(marker in msg for marker in _SQL_PARSE_MARKERS):
            return ParseError("E_SQL_PARSE", f"Invalid sql statement: {msg}.")
        return QueryError(
            "E_SQL_FAILED",
            f"sql failed: {msg}.",
            hint=f"The current view is available as '{name}' (or '_').",
        )

    @staticmethod
    def _restore_types(out: Table, source: Table) -> Table:
        """Recover boolean/temporal columns that SQLite stored as int/text."""
        changed = False
        cols = []
        for c in out.columns:
            if source.has_column(c.name):
                wanted = source.column(c.name).type
                if c.type == NULL and wanted != NULL:
                    # no values to infer from, e.g. an empty result
                    c = Column(c.name, wanted, c.values)
                    changed = True
                elif wanted == BOOLEAN and c.type == INTEGER and all(v in (None, 0, 1) for v in c.values):
                    c = Column(c.name, BOOLEAN, tuple(None if v is None else bool(v) for v in c.values))
                    changed = True
                elif wanted == DATETIME and c.type != wanted:
                    typ, values = infer_column([None if v is None else str(v) for v in c.values])
                    if typ == wanted:
                        c = Column(c.name, typ, tuple(values))
                        changed = True
            cols.append(c)
        return Table(tuple(cols)) if changed else out

    @classmethod
    def output_schema(cls, input_schema: Optional[TableSchema], params: Mapping[str, Any]) -> Optional[TableSchema]:
        return None

    @classmethod
    def describe(cls, params: Mapping[str, Any]) -> str:
        return f"sql {params.get('statement')}"


# ---------------- value object ----------------

def _freeze(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in obj.items()})
    if isinstance(obj, (list, tuple)):
        return tuple(_freeze(v) for v in obj)
    return obj


def _thaw(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return {k: _thaw(v) for k, v in obj.items()}
    if isinstance(obj, tuple):
        return [_thaw(v) for v in obj]
    return obj


@dataclass(frozen=True)
class Transform:
    """One immutable pipeline step: an op name plus its parameters."""

    op: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _freeze(self.params))

    def _impl(self) -> Type[TransformImpl]:
        impl = TRANSFORM_REGISTRY.get(self.op)
        if impl is None:
            raise QueryError(
                "E_UNSUPPORTED_OPERATION",
                f"Transform op '{self.op}' is not supported.",
                hint="Supported ops: " + ", ".join(sorted(TRANSFORM_REGISTRY.keys())),
            )
        return impl

    def validate(self, input_schema: Optional[TableSchema] = None) -> None:
        """Check parameters (and column names, when the input schema is known)."""
        self._impl().validate_params(self.params, input_schema=input_schema)

    def apply(self, table: Table, *, context: PipelineContext) -> Table:
        impl = self._impl()
        impl.validate_params(self.params, input_schema=table.schema())
        return impl.apply(table, params=self.params, context=context)

    def output_schema(self, input_schema: Optional[TableSchema]) -> Optional[TableSchema]:
        impl = TRANSFORM_REGISTRY.get(self.op)
        if impl is None:
            return None
        return impl.output_schema(input_schema, self.params)

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "params": _thaw(self.params)}

    def content_key(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, default=str)

    def __hash__(self) -> int:
        return hash(self.content_key())

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Transform):
            return NotImplemented
        return self.content_key() == other.content_key()

    def __str__(self) -> str:
        impl = TRANSFORM_REGISTRY.get(self.op)
        if impl is None:
            return f"Transform(op={self.op}, params={_thaw(self.params)})"
        return impl.describe(self.params)
