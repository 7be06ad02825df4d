from __future__ import annotations

import csv
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import petl as etl

from gridlens.errors import LoadError, QueryError
from gridlens.models.table import Column, Table, infer_column, infer_value_type
from gridlens.util import _infer_type_from_uri, _norm_path

SOURCE_TYPES = ("csv", "tsv", "json", "sqlite")


@dataclass(frozen=True)
class Source:
    """A file the viewer can open as a tab.

    Only a thin loader: it reads the file with petl and infers column types.
    """

    uri: Union[str, Path]
    type: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "uri", _norm_path(str(self.uri), base_dir=None))
        inferred = self.type or _infer_type_from_uri(self.uri)
        object.__setattr__(self, "type", inferred)

        if self.type is None:
            raise LoadError(
                "E_SOURCE_TYPE_INFER",
                f"Could not infer the format of '{self.uri}'.",
                hint="Pass the format explicitly, e.g. --type csv.",
            )
        if self.type not in SOURCE_TYPES:
            raise LoadError(
                "E_SOURCE_TYPE_UNSUPPORTED",
                f"Source type '{self.type}' is not supported.",
                hint="Supported source types: " + ", ".join(SOURCE_TYPES) + ".",
            )

    @property
    def name(self) -> str:
        return os.path.basename(str(self.uri)) or str(self.uri)

    def preflight(self) -> None:
        if not os.path.exists(self.uri):
            raise LoadError(
                "E_SOURCE_NOT_FOUND",
                f"File not found: '{self.uri}'.",
                hint="Check the path, or open it relative to the current directory.",
            )
        if not os.access(self.uri, os.R_OK):
            raise LoadError(
                "E_SOURCE_READ",
                f"File is not readable: '{self.uri}'.",
                hint="Check file permissions.",
            )

    # ---------- PETL table (lazy) ----------
    def table(self):
        """Return a lazy petl table for this source."""
        if self.type == "csv":
            return etl.fromcsv(self.uri, **self.options)
        if self.type == "tsv":
            return etl.fromtsv(self.uri, **self.options)
        if self.type == "json":
            return etl.fromjson(self.uri, **self.options)
        raise LoadError(
            "E_SOURCE_TYPE_UNSUPPORTED",
            f"Source type '{self.type}' cannot be read.",
        )

    def _read_rows(self) -> List[Any]:
        if self.type != "sqlite":
            return list(self.table())
        table_name = self.options.get("table") or self._first_sqlite_table()
        conn = sqlite3.connect(self.uri)
        try:
            return list(etl.fromdb(conn, 'SELECT * FROM "' + table_name.replace('"', '""') + '"'))
        finally:
            conn.close()

    def _first_sqlite_table(self) -> str:
        conn = sqlite3.connect(self.uri)
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name LIMIT 1"
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise LoadError(
                "E_SOURCE_READ",
                f"Database '{self.uri}' contains no tables.",
            )
        return row[0]

    def load(self) -> Table:
        """Materialize the source as a typed Table."""
        self.preflight()
        try:
            rows = self._read_rows()
        except LoadError:
            raise
        except UnicodeDecodeError as e:
            raise LoadError(
                "E_SOURCE_ENCODING",
                f"Could not decode '{self.uri}': {e.reason}.",
                hint="Pass an explicit encoding option, e.g. encoding=latin-1.",
            ) from e
        except (csv.Error, ValueError, sqlite3.Error) as e:
            raise LoadError(
                "E_SOURCE_PARSE",
                f"Could not parse '{self.uri}': {e}",
                hint=f"Check that the file really is {self.type}.",
            ) from e
        except OSError as e:
            raise LoadError(
                "E_SOURCE_READ",
                f"Could not read '{self.uri}': {e}",
            ) from e
        if not rows:
            return Table.empty()

        header = [str(h) for h in rows[0]]
        data = rows[1:]
        columns: List[Column] = []
        for i, name in enumerate(header):
            raw = [r[i] if i < len(r) else None for r in data]
            if self.type in ("csv", "tsv"):
                typ, values = infer_column(raw)
            else:
                typ, values = infer_value_type(raw), raw
                if typ == "string":
                    typ, values = infer_column(raw)
            columns.append(Column(name, typ, tuple(values)))
        try:
            return Table(tuple(columns))
        except QueryError as e:
            raise LoadError("E_SOURCE_PARSE", f"Could not build a table from '{self.uri}': {e}") from e

    def describe(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"uri": self.uri, "type": self.type}
        if self.options:
            d["options"] = dict(self.options)
        return d

    def __str__(self) -> str:
        return f'Source("{self.uri}")  kind={self.type}'
