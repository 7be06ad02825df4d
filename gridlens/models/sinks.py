from __future__ import annotations

import datetime as _dt
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import petl as etl

from gridlens.errors import ExportError
from gridlens.models.table import Table, cell_text
from gridlens.util import _infer_type_from_uri, _norm_path

SINK_TYPES = ("csv", "tsv", "json")


def _json_value(v: Any) -> Any:
    if isinstance(v, (_dt.date, _dt.time)):
        return v.isoformat()
    return v


@dataclass(frozen=True)
class Sink:
    uri: Union[str, Path]
    type: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "uri", _norm_path(str(self.uri), base_dir=None))
        inferred = self.type or _infer_type_from_uri(self.uri)
        object.__setattr__(self, "type", inferred)
        if self.type is None:
            raise ExportError(
                "E_SINK_TYPE_INFER",
                f"Could not infer the export format from '{self.uri}'.",
                hint="Give the format explicitly, e.g. export out.data csv.",
            )

        if self.type not in SINK_TYPES:
            raise ExportError(
                "E_SINK_TYPE_UNSUPPORTED",
                f"Export format '{self.type}' is not supported.",
                hint="Supported export formats: " + ", ".join(SINK_TYPES) + ".",
            )

        # Fail fast: ensure the output directory exists and is writable.
        parent = os.path.dirname(self.uri) or "."
        if not os.path.isdir(parent):
            raise ExportError(
                "E_SINK_DIR_NOT_FOUND",
                f"Output directory does not exist: '{parent}'.",
                hint="Create the directory or choose a different output path.",
            )
        if not os.access(parent, os.W_OK):
            raise ExportError(
                "E_SINK_NOT_WRITABLE",
                f"Output directory is not writable: '{parent}'.",
                hint="Check permissions or choose a different output location.",
            )

    def _prepared(self, table: Table):
        if self.type == "json":
            return etl.convertall(table.to_petl(), _json_value)
        # delimited text: write the same text the grid shows, nulls as empty cells
        return etl.convertall(table.to_petl(), cell_text)

    def write(self, table: Table) -> None:
        prepared = self._prepared(table)
        try:
            if self.type == "csv":
                etl.tocsv(prepared, self.uri, **self.options)
            elif self.type == "tsv":
                etl.totsv(prepared, self.uri, **self.options)
            else:
                etl.tojson(prepared, self.uri, **self.options)
        except FileNotFoundError as e:
            parent = os.path.dirname(self.uri) or "."
            raise ExportError(
                "E_SINK_DIR_NOT_FOUND",
                f"Output directory does not exist: '{parent}'.",
                hint="Create the directory or choose a different output path.",
            ) from e
        except PermissionError as e:
            parent = os.path.dirname(self.uri) or "."
            raise ExportError(
                "E_SINK_NOT_WRITABLE",
                f"Cannot write to output directory: '{parent}'.",
                hint="Check permissions or choose a different output location.",
            ) from e
        except (OSError, TypeError, ValueError) as e:
            raise ExportError(
                "E_SINK_WRITE",
                f"Could not write '{self.uri}': {type(e).__name__}: {e}",
                hint="Check file permissions and export options (delimiter/encoding).",
            ) from e

    def __str__(self) -> str:
        return f'Sink("{self.uri}")  kind={self.type}'
